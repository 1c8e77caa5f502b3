import re
import time
from collections import Counter
from datetime import datetime

from src.common.config import AggregationConfig
from src.common.errors import TimestampError
from src.common.utils import ClickEvent
from src.mapping import MappingIndex


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
# strptime acepta campos sin cero a la izquierda; el regex fija el ancho
TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z")


def parse_timestamp(timestamp: str) -> datetime:
    """Parses ``YYYY-MM-DDTHH:MM:SSZ`` strictly. Raises TimestampError otherwise."""
    if not TIMESTAMP_PATTERN.fullmatch(timestamp):
        raise TimestampError(timestamp)
    try:
        return datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except ValueError as e:
        raise TimestampError(timestamp) from e


class AggregationState:
    """Running tallies for one pipeline run. Counters give default-zero lookups."""

    def __init__(self):
        self.total_clicks = 0
        self.processed_records = 0
        self.filtered_out = 0
        self.clicks_by_destination = Counter()
        self.clicks_by_referrer = Counter()
        self.clicks_by_date = Counter()
        self.unknown_short_links = []
        self.unresolved = set()
        self.processing_time_ms = None

    def record_unknown(self, short_link: str):
        self.unknown_short_links.append(short_link)
        self.unresolved.add(short_link)

    def count(self, destination: str, referrer: str, date: str):
        self.total_clicks += 1
        self.clicks_by_destination[destination] += 1
        self.clicks_by_referrer[referrer] += 1
        self.clicks_by_date[date] += 1


class ClickAggregator:
    """
    Single-pass processor: call ``handle`` once per event, in stream order.

    A malformed timestamp raises TimestampError and is meant to end the run;
    whatever was counted before it stays in ``state``.
    """

    def __init__(self, mapping: MappingIndex, config: AggregationConfig | None = None):
        self.mapping = mapping
        self.config = config or AggregationConfig()
        self.state = AggregationState()
        self._started_at = None

    def handle(self, event: ClickEvent):
        state = self.state
        state.processed_records += 1

        clicked_at = parse_timestamp(event.timestamp)

        if self.config.filter_year and clicked_at.year != self.config.filter_year:
            state.filtered_out += 1
            return

        destination, found = self.mapping.lookup(event.short_link)
        if not found:
            state.record_unknown(event.short_link)
            destination = event.short_link

        state.count(destination, event.referrer, event.timestamp[:10])

    def start_timing(self):
        self._started_at = time.perf_counter()

    def stop_timing(self):
        if self._started_at is not None:
            self.state.processing_time_ms = round(
                (time.perf_counter() - self._started_at) * 1000, 4
            )
