"""Skane session engine — scan, act, feel, score."""

__version__ = "0.1.0"
