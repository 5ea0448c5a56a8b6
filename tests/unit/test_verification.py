"""Unit tests for planned-versus-actual verification."""

from datetime import datetime, timezone

import pytest
from conftest import make_block

from location_timeline.analysis.verification import VerificationEngine
from location_timeline.models import (
    BlockKind,
    PlannedEvent,
    VerificationConfig,
    VerificationStatus,
)


def at(hour: int) -> datetime:
    return datetime(2024, 3, 5, hour, 0, tzinfo=timezone.utc)


def event(category: str, start: int = 9, end: int = 17, event_id: str = "e1") -> PlannedEvent:
    return PlannedEvent(id=event_id, title=category, start=at(start), end=at(end), category=category)


@pytest.fixture
def engine() -> VerificationEngine:
    return VerificationEngine(VerificationConfig())


class TestVerifyEvent:
    """Test single-event verification."""

    def test_event_at_expected_place_verified(self, engine):
        office = make_block(at(9), at(17), category="office", block_id="b1")

        result = engine.verify_event(event("work"), [office])

        assert result.status is VerificationStatus.VERIFIED
        assert result.matched_block_ids == ["b1"]
        assert result.overlap_ratio == 1.0
        assert result.confidence == pytest.approx(0.8)

    def test_event_elsewhere_contradicted(self, engine):
        cafe = make_block(at(9), at(17), category="cafe")

        result = engine.verify_event(event("work"), [cafe])

        assert result.status is VerificationStatus.CONTRADICTED
        assert result.matched_block_ids == []
        assert result.overlap_ratio == 0.0

    def test_travel_counts_as_evidence(self, engine):
        blocks = [
            make_block(at(9), at(10), category="office"),
            make_block(at(10), at(17), category="travel", kind=BlockKind.TRAVEL),
        ]

        result = engine.verify_event(event("work"), blocks)

        assert result.status is VerificationStatus.CONTRADICTED
        assert result.overlap_ratio == pytest.approx(1 / 8, abs=1e-4)

    def test_unknown_time_ignored_but_lowers_confidence(self, engine):
        blocks = [
            make_block(at(9), at(12), category="office"),
            make_block(at(12), at(13), category="travel", kind=BlockKind.TRAVEL),
            make_block(at(13), at(17), kind=BlockKind.UNKNOWN, confidence=0.0),
        ]

        result = engine.verify_event(event("work"), blocks)

        assert result.status is VerificationStatus.VERIFIED
        assert result.overlap_ratio == 0.75
        # Block confidence 0.8 scaled by 4h of evidence in an 8h event
        assert result.confidence == pytest.approx(0.4)

    def test_gap_filled_block_is_evidence(self, engine):
        blocks = [
            make_block(at(9), at(11), category="gym"),
            make_block(at(11), at(12), category="gym", kind=BlockKind.GAP_FILLED, confidence=0.4),
        ]

        result = engine.verify_event(event("health", 9, 12), blocks)

        assert result.status is VerificationStatus.VERIFIED
        assert len(result.matched_block_ids) == 2

    def test_unmapped_category_has_no_expectation(self, engine):
        cafe = make_block(at(9), at(17), category="cafe")

        result = engine.verify_event(event("social"), [cafe])

        assert result.status is VerificationStatus.NO_EXPECTATION
        assert result.expected_categories == []

    def test_no_evidence_is_insufficient(self, engine):
        blocks = [
            make_block(at(0), at(9), kind=BlockKind.SLEEP_CANDIDATE, category="sleep"),
            make_block(at(9), at(17), kind=BlockKind.UNKNOWN),
            make_block(at(17), at(18), category=None),
        ]

        result = engine.verify_event(event("work"), blocks)

        assert result.status is VerificationStatus.INSUFFICIENT_EVIDENCE
        assert result.expected_categories == ["office", "coworking"]

    def test_categories_compare_case_insensitively(self, engine):
        office = make_block(at(9), at(17), category="office")

        result = engine.verify_event(event(" Work "), [office])

        assert result.status is VerificationStatus.VERIFIED

    def test_custom_threshold(self):
        engine = VerificationEngine(
            VerificationConfig(
                category_expectations={"work": ["office"]}, min_match_ratio=0.9
            )
        )
        blocks = [
            make_block(at(9), at(16), category="office"),
            make_block(at(16), at(17), category="cafe"),
        ]

        result = engine.verify_event(event("work"), blocks)

        assert result.status is VerificationStatus.CONTRADICTED
        assert result.overlap_ratio == 0.875


class TestVerify:
    """Test verifying a day of events."""

    def test_results_in_event_order(self, engine):
        events = [
            event("work", 13, 17, event_id="afternoon"),
            event("meal", 12, 13, event_id="lunch"),
            event("work", 9, 12, event_id="morning"),
        ]
        blocks = [
            make_block(at(9), at(12), category="office"),
            make_block(at(12), at(13), category="restaurant"),
            make_block(at(13), at(17), category="office"),
        ]

        results = engine.verify(events, blocks)

        assert [r.event_id for r in results] == ["morning", "lunch", "afternoon"]
        assert all(r.status is VerificationStatus.VERIFIED for r in results)

    def test_verification_does_not_mutate_blocks(self, engine):
        blocks = [make_block(at(9), at(17), category="cafe")]
        before = [b.model_copy() for b in blocks]

        engine.verify([event("work")], blocks)

        assert blocks == before
