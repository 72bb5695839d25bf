"""HTTP surface for the skane engine."""
