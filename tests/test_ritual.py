"""Tests for ritual eligibility."""

from datetime import datetime, timedelta

import pytest

from skane_engine.models import FeedbackValue, SessionStatus, SkaneSession
from skane_engine.sessions.ritual import RitualEvaluator, RitualThresholds

NOW = datetime(2025, 3, 20, 12, 0, 0)


def _sessions(count: int, feedback: FeedbackValue | None = FeedbackValue.BETTER, spacing_hours: float = 25):
    start = NOW - timedelta(days=5)
    return [
        SkaneSession(
            owner_ref="acct-1",
            created_at=start + timedelta(hours=i * spacing_hours),
            status=SessionStatus.COMPLETED,
            chosen_action="box_breathing",
            feedback=feedback,
        )
        for i in range(count)
    ]


class TestRitualEvaluator:
    """Unit tests for :class:`RitualEvaluator`."""

    @pytest.fixture
    def evaluator(self) -> RitualEvaluator:
        return RitualEvaluator()

    def test_five_positive_sessions_eligible(self, evaluator):
        result = evaluator.evaluate(_sessions(5), NOW)
        assert result.eligible is True
        assert result.reason == "eligible"
        assert result.stats.total_actions == 5
        assert result.stats.days_since_first == 5

    def test_four_sessions_not_eligible(self, evaluator):
        result = evaluator.evaluate(_sessions(4), NOW)
        assert result.eligible is False
        assert result.reason == "need_1_more_actions"

    def test_no_sessions(self, evaluator):
        result = evaluator.evaluate([], NOW)
        assert result.eligible is False
        assert result.reason == "no_actions"

    def test_mostly_worse_rejected(self, evaluator):
        sessions = _sessions(5, FeedbackValue.WORSE)
        sessions[0] = sessions[0].model_copy(update={"feedback": FeedbackValue.BETTER})
        result = evaluator.evaluate(sessions, NOW)
        assert result.reason == "positive_rate_too_low"
        assert result.stats.positive_rate == pytest.approx(0.2)

    def test_same_counts_positive_by_default(self, evaluator):
        assert evaluator.evaluate(_sessions(5, FeedbackValue.SAME), NOW).eligible is True

    def test_same_not_positive_when_configured(self):
        evaluator = RitualEvaluator(RitualThresholds(count_neutral_as_positive=False))
        assert evaluator.evaluate(_sessions(5, FeedbackValue.SAME), NOW).reason == "positive_rate_too_low"

    def test_sessions_without_feedback_do_not_dilute_rate(self, evaluator):
        sessions = _sessions(5)
        sessions.append(
            SkaneSession(
                owner_ref="acct-1",
                created_at=NOW - timedelta(hours=1),
                status=SessionStatus.AWAITING_FEEDBACK,
                chosen_action="box_breathing",
            )
        )
        result = evaluator.evaluate(sessions, NOW)
        assert result.stats.positive_rate == 1.0
        assert result.stats.total_actions == 6

    def test_too_recent(self, evaluator):
        start = NOW - timedelta(days=1, hours=2)
        sessions = [
            SkaneSession(
                owner_ref="acct-1",
                created_at=start + timedelta(hours=i * 6),
                chosen_action="box_breathing",
                feedback=FeedbackValue.BETTER,
            )
            for i in range(5)
        ]
        result = evaluator.evaluate(sessions, NOW)
        assert result.reason == "wait_2_more_days"

    def test_single_day_usage(self, evaluator):
        day = datetime(2025, 3, 15, 8, 0, 0)
        sessions = [
            SkaneSession(
                owner_ref="acct-1",
                created_at=day + timedelta(hours=i),
                chosen_action="box_breathing",
                feedback=FeedbackValue.BETTER,
            )
            for i in range(5)
        ]
        result = evaluator.evaluate(sessions, NOW)
        assert result.stats.distinct_days == 1
        assert result.reason == "need_more_distinct_days"

    def _boundary_sessions(self) -> list[SkaneSession]:
        first = NOW - timedelta(days=3)
        offsets = [timedelta(0), timedelta(hours=1), timedelta(hours=2), timedelta(days=1), timedelta(days=1, hours=1)]
        feedbacks = [
            FeedbackValue.BETTER,
            FeedbackValue.WORSE,
            FeedbackValue.BETTER,
            FeedbackValue.WORSE,
            FeedbackValue.BETTER,
        ]
        return [
            SkaneSession(
                owner_ref="acct-1",
                created_at=first + offset,
                status=SessionStatus.COMPLETED,
                chosen_action="box_breathing",
                feedback=fb,
            )
            for offset, fb in zip(offsets, feedbacks)
        ]

    def test_exact_thresholds_are_eligible(self, evaluator):
        result = evaluator.evaluate(self._boundary_sessions(), NOW)
        assert result.eligible is True
        assert result.stats.total_actions == 5
        assert result.stats.positive_rate == pytest.approx(0.6)
        assert result.stats.days_since_first == 3
        assert result.stats.distinct_days == 2

    def test_one_session_short_of_thresholds(self, evaluator):
        result = evaluator.evaluate(self._boundary_sessions()[:4], NOW)
        assert result.eligible is False
        assert result.reason == "need_1_more_actions"

    def test_just_under_three_days(self, evaluator):
        sessions = [
            s.model_copy(update={"created_at": s.created_at + timedelta(minutes=1)})
            for s in self._boundary_sessions()
        ]
        result = evaluator.evaluate(sessions, NOW)
        assert result.stats.days_since_first == 2
        assert result.reason == "wait_1_more_days"
