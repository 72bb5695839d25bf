"""Tests for the activation classifier and recommendation hints."""

import math

import pytest

from skane_engine.catalog import SignalBounds
from skane_engine.errors import InvalidSignalError
from skane_engine.models import BodyArea, PrimaryNeed, PrimaryState, Urgency
from skane_engine.scoring.classifier import ActivationClassifier, parse_snapshot


class TestClassify:
    """Unit tests for :meth:`ActivationClassifier.classify`."""

    def test_high_activation(self, classifier, high_signal):
        state = classifier.classify(high_signal)
        assert state.primary_state == PrimaryState.HIGH_ACTIVATION
        assert state.activation_level == pytest.approx(0.93)
        assert state.confidence == pytest.approx(0.8)

    def test_low_energy(self, classifier, low_signal):
        state = classifier.classify(low_signal)
        assert state.primary_state == PrimaryState.LOW_ENERGY
        assert state.confidence == pytest.approx(0.7143)

    def test_regulated_centre_has_full_confidence(self, classifier, regulated_signal):
        state = classifier.classify(regulated_signal)
        assert state.primary_state == PrimaryState.REGULATED
        assert state.confidence == pytest.approx(1.0)

    @pytest.mark.parametrize("level", [0.35, 0.65])
    def test_cut_point_resolves_to_regulated(self, classifier, signal_at, level):
        state = classifier.classify(signal_at(level))
        assert state.primary_state == PrimaryState.REGULATED
        assert state.confidence == 0.0

    def test_deterministic(self, classifier, high_signal):
        assert classifier.classify(high_signal) == classifier.classify(high_signal)

    def test_confidence_grows_away_from_cut(self, classifier, signal_at):
        confs = [classifier.classify(signal_at(lvl)).confidence for lvl in (0.7, 0.8, 0.9, 1.0)]
        assert confs == sorted(confs)
        assert confs[-1] == pytest.approx(1.0)

    def test_confidence_in_unit_interval(self, classifier, signal_at):
        for i in range(0, 101, 5):
            conf = classifier.classify(signal_at(i / 100)).confidence
            assert 0.0 <= conf <= 1.0


class TestValidation:
    def test_out_of_bounds_rejected_not_clamped(self, classifier, regulated_signal):
        regulated_signal["facial"]["jaw_tension"] = 1.2
        with pytest.raises(InvalidSignalError) as exc_info:
            classifier.classify(regulated_signal)
        fields = [e.field for e in exc_info.value.errors]
        assert fields == ["facial.jaw_tension"]

    def test_missing_field_reported(self, classifier, regulated_signal):
        del regulated_signal["respiratory"]["breathing_rate"]
        with pytest.raises(InvalidSignalError) as exc_info:
            classifier.classify(regulated_signal)
        assert any("breathing_rate" in e.field for e in exc_info.value.errors)

    def test_non_numeric_rejected(self, regulated_signal):
        regulated_signal["postural"]["head_tilt"] = "tilted"
        with pytest.raises(InvalidSignalError):
            parse_snapshot(regulated_signal)

    def test_nan_rejected(self, classifier, regulated_signal):
        regulated_signal["facial"]["eye_openness"] = math.nan
        with pytest.raises(InvalidSignalError):
            classifier.classify(regulated_signal)

    def test_custom_bounds(self, signal_at):
        clf = ActivationClassifier(bounds=SignalBounds(0.0, 100.0))
        payload = signal_at(0.5)
        for group in payload.values():
            for name in group:
                group[name] *= 100
        assert clf.classify(payload).primary_state == PrimaryState.REGULATED

    def test_invalid_cut_points(self):
        with pytest.raises(ValueError):
            ActivationClassifier(low_cut=0.7, high_cut=0.3)


class TestHints:
    def test_tense_high_activation_is_immediate(self, classifier, high_signal):
        state = classifier.classify(high_signal)
        hints = classifier.derive_hints(high_signal, state)
        assert hints.urgency == Urgency.IMMEDIATE
        assert hints.primary_need == PrimaryNeed.RELEASE_TENSION
        assert hints.body_area_priority == BodyArea.BREATHING

    def test_low_energy_needs_energy(self, classifier, low_signal):
        state = classifier.classify(low_signal)
        hints = classifier.derive_hints(low_signal, state)
        assert hints.urgency == Urgency.SOON
        assert hints.primary_need == PrimaryNeed.ENERGIZE

    def test_regulated_is_preventive(self, classifier, signal_at):
        payload = signal_at(0.45)
        state = classifier.classify(payload)
        hints = classifier.derive_hints(payload, state)
        assert hints.urgency == Urgency.PREVENTIVE
        assert hints.primary_need == PrimaryNeed.MAINTAIN
        # Eyes half closed
        assert hints.body_area_priority == BodyArea.EYES
