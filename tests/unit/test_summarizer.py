"""Unit tests for hourly summaries."""

from datetime import datetime, timedelta, timezone

from conftest import make_block, make_fix

from location_timeline.analysis.summarizer import HourlySummarizer
from location_timeline.models import BlockKind, RawSample, SampleSource

DAY = datetime(2024, 3, 5).date()


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 3, 5, hour, minute, tzinfo=timezone.utc)


class TestHourlySummarizer:
    """Test summarizing a day hour by hour."""

    def test_one_summary_per_hour(self, settings):
        summaries = HourlySummarizer(settings).summarize("user-1", DAY, [], [])

        assert [s.hour for s in summaries] == list(range(24))
        assert all(s.dominant_kind is BlockKind.UNKNOWN for s in summaries)
        assert summaries[0].summary == "No location data"

    def test_dominant_block_and_evidence(self, settings):
        blocks = [
            make_block(at(9), at(10), category="cafe", label="Corner Cafe"),
            make_block(at(10), at(10, 40), category="travel", kind=BlockKind.TRAVEL),
            make_block(at(10, 40), at(11), category="office"),
        ]
        fixes = [make_fix(at(9) + timedelta(minutes=5 * i)) for i in range(12)]
        screen = RawSample(
            timestamp=at(9, 10),
            end_timestamp=at(9, 30),
            source=SampleSource.SCREEN_USAGE,
            app="mail",
        )

        summaries = HourlySummarizer(settings).summarize(
            "user-1", DAY, blocks, fixes + [screen]
        )

        nine, ten = summaries[9], summaries[10]
        assert nine.dominant_kind is BlockKind.STATIONARY
        assert nine.label == "Corner Cafe"
        assert nine.location_samples == 12
        assert nine.screen_minutes == 20.0
        assert nine.summary == "At Corner Cafe (12 fixes)"
        assert ten.dominant_kind is BlockKind.TRAVEL
        assert ten.summary == "Travelling (0 fixes)"

    def test_gap_and_sleep_descriptions(self, settings):
        blocks = [
            make_block(at(0), at(7), category="sleep", kind=BlockKind.SLEEP_CANDIDATE, label="Home"),
            make_block(at(7), at(8), category="home", kind=BlockKind.GAP_FILLED, label="Home"),
        ]

        summaries = HourlySummarizer(settings).summarize("user-1", DAY, blocks, [])

        assert summaries[3].summary == "Probably asleep at Home (0 fixes)"
        assert summaries[7].summary == "Likely still at Home (0 fixes)"
