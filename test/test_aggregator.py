import json
import pytest

from src.aggregator import ClickAggregator, parse_timestamp
from src.common.config import AggregationConfig
from src.common.errors import TimestampError
from src.common.utils import ClickEvent
from src.mapping import MappingIndex
from src.stream import stream_clicks


def click(bitlink, timestamp="2020-02-15T00:00:00Z", referrer="direct"):
    return ClickEvent(
        short_link=bitlink,
        user_agent="Mozilla/5.0",
        timestamp=timestamp,
        referrer=referrer,
        remote_address="1.1.1.1",
    )


@pytest.fixture
def mapping():
    return MappingIndex(
        {
            "http://bit.ly/google": "https://google.com/",
            "http://bit.ly/github": "https://github.com/",
        }
    )


# --- Timestamp parsing ---

TIMESTAMP_CASES = [
    ("2020-02-15T00:00:00Z", "2020-02-15", False),
    ("2021-12-31T23:59:59Z", "2021-12-31", False),
    ("invalid-timestamp", None, True),
    ("not-a-date", None, True),
    ("2020-02-15", None, True),
    ("2020-02-15T00:00:00.123Z", None, True),
    ("2020-02-15T00:00:00+00:00", None, True),
    ("2020-2-5T1:2:3Z", None, True),
    ("2020-02-30T00:00:00Z", None, True),
    ("", None, True),
]


@pytest.mark.parametrize("timestamp, expected_date, should_err", TIMESTAMP_CASES)
def test_parse_timestamp(timestamp, expected_date, should_err):
    if should_err:
        with pytest.raises(TimestampError) as exc_info:
            parse_timestamp(timestamp)
        assert exc_info.value.timestamp == timestamp
    else:
        assert parse_timestamp(timestamp).date().isoformat() == expected_date


# --- handle() ---


def test_new_aggregator_is_empty(mapping):
    state = ClickAggregator(mapping).state

    assert state.total_clicks == 0
    assert state.processed_records == 0
    assert len(state.clicks_by_destination) == 0
    assert state.unknown_short_links == []


def test_known_bitlink(mapping):
    aggregator = ClickAggregator(mapping)
    aggregator.handle(click("http://bit.ly/google", referrer="t.co"))
    state = aggregator.state

    assert state.total_clicks == 1
    assert state.processed_records == 1
    assert state.clicks_by_destination["https://google.com/"] == 1
    assert state.clicks_by_referrer["t.co"] == 1
    assert state.clicks_by_date["2020-02-15"] == 1


def test_unknown_bitlink_falls_back_to_itself(mapping):
    aggregator = ClickAggregator(mapping)
    for _ in range(3):
        aggregator.handle(click("http://bit.ly/unknown"))
    state = aggregator.state

    assert state.unknown_short_links == ["http://bit.ly/unknown"] * 3
    assert state.clicks_by_destination["http://bit.ly/unknown"] == 3
    assert state.total_clicks == 3


def test_multiple_records(mapping):
    aggregator = ClickAggregator(mapping)
    for event in [
        click("http://bit.ly/google", "2020-01-01T00:00:00Z", "direct"),
        click("http://bit.ly/google", "2020-01-01T00:00:00Z", "t.co"),
        click("http://bit.ly/github", "2020-01-02T00:00:00Z", "direct"),
    ]:
        aggregator.handle(event)
    state = aggregator.state

    assert state.total_clicks == 3
    assert state.clicks_by_destination == {
        "https://google.com/": 2,
        "https://github.com/": 1,
    }
    assert state.clicks_by_referrer == {"direct": 2, "t.co": 1}
    assert state.clicks_by_date == {"2020-01-01": 2, "2020-01-02": 1}


def test_year_filter(mapping):
    aggregator = ClickAggregator(mapping, AggregationConfig(filter_year=2020))
    for event in [
        click("http://bit.ly/google", "2020-03-01T10:00:00Z"),
        click("http://bit.ly/google", "2020-04-01T10:00:00Z"),
        click("http://bit.ly/github", "2021-01-01T10:00:00Z"),
    ]:
        aggregator.handle(event)
    state = aggregator.state

    assert state.processed_records == 3
    assert state.total_clicks == 2
    assert state.filtered_out == 1
    assert "https://github.com/" not in state.clicks_by_destination
    assert state.processed_records == state.total_clicks + state.filtered_out


def test_filtered_unknown_bitlink_is_not_tracked(mapping):
    aggregator = ClickAggregator(mapping, AggregationConfig(filter_year=2020))
    aggregator.handle(click("http://bit.ly/zzz", "2019-05-05T00:00:00Z"))

    assert aggregator.state.unknown_short_links == []
    assert aggregator.state.filtered_out == 1


def test_invalid_timestamp_counts_as_processed(mapping):
    aggregator = ClickAggregator(mapping)
    aggregator.handle(click("http://bit.ly/google"))

    with pytest.raises(TimestampError):
        aggregator.handle(click("http://bit.ly/google", timestamp="not-a-date"))

    state = aggregator.state
    assert state.processed_records == 2
    assert state.total_clicks == 1
    assert state.filtered_out == 0


def test_counts_stay_consistent(mapping):
    aggregator = ClickAggregator(mapping)
    for i in range(20):
        link = "http://bit.ly/google" if i % 3 else "http://bit.ly/nope"
        aggregator.handle(click(link, f"2020-02-{10 + i % 5}T00:00:00Z", f"ref{i % 4}"))
    state = aggregator.state

    assert state.total_clicks == 20
    assert sum(state.clicks_by_destination.values()) == state.total_clicks
    assert sum(state.clicks_by_referrer.values()) == state.total_clicks
    assert sum(state.clicks_by_date.values()) == state.total_clicks


# --- Streaming + aggregation ---


@pytest.fixture
def json_factory(tmp_path):
    def _create(filename, content):
        p = tmp_path / filename
        p.write_text(json.dumps(content), encoding="utf-8")
        return str(p)

    return _create


def as_record(event):
    return {
        "bitlink": event.short_link,
        "user_agent": event.user_agent,
        "timestamp": event.timestamp,
        "referrer": event.referrer,
        "remote_ip": event.remote_address,
    }


def test_bad_timestamp_aborts_stream(mapping, json_factory):
    records = [
        as_record(click("http://bit.ly/google")),
        as_record(click("http://bit.ly/github", timestamp="not-a-date")),
        as_record(click("http://bit.ly/google")),
    ]
    file_path = json_factory("decodes.json", records)
    aggregator = ClickAggregator(mapping)

    with pytest.raises(TimestampError):
        stream_clicks(file_path, aggregator.handle)

    # el tercer registro nunca se procesa; lo anterior no se revierte
    assert aggregator.state.processed_records == 2
    assert aggregator.state.total_clicks == 1


def test_replay_is_idempotent(mapping, json_factory):
    records = [
        as_record(click("http://bit.ly/b", referrer="x")),
        as_record(click("http://bit.ly/google")),
        as_record(click("http://bit.ly/a", "2020-02-16T00:00:00Z")),
        as_record(click("http://bit.ly/b")),
    ]
    file_path = json_factory("decodes.json", records)

    runs = []
    for _ in range(2):
        aggregator = ClickAggregator(mapping)
        stream_clicks(file_path, aggregator.handle)
        runs.append(aggregator.state)

    first, second = runs
    assert first.clicks_by_destination == second.clicks_by_destination
    assert first.clicks_by_referrer == second.clicks_by_referrer
    assert first.clicks_by_date == second.clicks_by_date
    assert first.unknown_short_links == second.unknown_short_links
    assert first.unknown_short_links == [
        "http://bit.ly/b",
        "http://bit.ly/a",
        "http://bit.ly/b",
    ]


def test_timing_is_recorded(mapping):
    aggregator = ClickAggregator(mapping)
    aggregator.start_timing()
    aggregator.handle(click("http://bit.ly/google"))
    aggregator.stop_timing()

    assert aggregator.state.processing_time_ms is not None
    assert aggregator.state.processing_time_ms >= 0
