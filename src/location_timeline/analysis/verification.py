"""
Planned-versus-actual verification.

Each planned event is compared with the blocks it overlaps. Event categories
map to the place categories where the event is expected to happen; categories
without a mapping (free time, social, family, digital...) have no location
expectation and can never be contradicted.
"""

import logging

from ..constants import PlaceCategories
from ..models import (
    BlockKind,
    LocationBlock,
    PlannedEvent,
    VerificationConfig,
    VerificationResult,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


class VerificationEngine:
    """Read-only comparison of planned events with observed blocks."""

    def __init__(self, config: VerificationConfig):
        self.config = config

    def verify(
        self, events: list[PlannedEvent], blocks: list[LocationBlock]
    ) -> list[VerificationResult]:
        """Verify every event against the day's blocks, in event start order."""
        ordered = sorted(events, key=lambda e: (e.start, e.end, e.id))
        results = [self.verify_event(event, blocks) for event in ordered]
        logger.debug(
            f"Verified {len(results)} events: "
            + ", ".join(
                f"{status.value}={sum(r.status is status for r in results)}"
                for status in VerificationStatus
            )
        )
        return results

    def verify_event(
        self, event: PlannedEvent, blocks: list[LocationBlock]
    ) -> VerificationResult:
        """
        Verify a single planned event.

        Evidence blocks are overlapping blocks with a known place category,
        plus travel blocks (being on the move is evidence of not being at
        the expected place). Unknown, unlabeled and sleep-candidate blocks
        carry no evidence.
        """
        expected = self.config.category_expectations.get(event.category)
        if not expected:
            return VerificationResult(
                event_id=event.id, status=VerificationStatus.NO_EXPECTATION
            )

        evidence = []
        for block in blocks:
            overlap = block.overlap_seconds(event.start, event.end)
            if overlap <= 0 or not self._is_evidence(block):
                continue
            evidence.append((block, overlap))

        if not evidence:
            return VerificationResult(
                event_id=event.id,
                status=VerificationStatus.INSUFFICIENT_EVIDENCE,
                expected_categories=list(expected),
            )

        evidence_seconds = sum(overlap for _, overlap in evidence)
        matched = [
            (block, overlap) for block, overlap in evidence if block.category in expected
        ]
        matched_seconds = sum(overlap for _, overlap in matched)
        ratio = matched_seconds / evidence_seconds

        if ratio >= self.config.min_match_ratio:
            status = VerificationStatus.VERIFIED
            weighted = matched
        else:
            status = VerificationStatus.CONTRADICTED
            weighted = [(b, o) for b, o in evidence if b.category not in expected]

        total = sum(o for _, o in weighted)
        block_confidence = sum(b.confidence * o for b, o in weighted) / total if total else 0.0
        coverage = min(1.0, evidence_seconds / (event.end - event.start).total_seconds())

        return VerificationResult(
            event_id=event.id,
            status=status,
            matched_block_ids=[block.id for block, _ in matched],
            expected_categories=list(expected),
            overlap_ratio=round(ratio, 4),
            confidence=round(block_confidence * coverage, 4),
        )

    @staticmethod
    def _is_evidence(block: LocationBlock) -> bool:
        if block.kind is BlockKind.TRAVEL:
            return True
        if block.kind in (BlockKind.UNKNOWN, BlockKind.SLEEP_CANDIDATE):
            return False
        return block.category is not None and block.category != PlaceCategories.UNKNOWN
