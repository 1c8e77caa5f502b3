import io
import re
import time

import polars as pl

from src.aggregator import TIMESTAMP_FORMAT, AggregationState
from src.common.config import AggregationConfig
from src.common.errors import DecodeError, FramingError, SourceError, TimestampError
from src.common.logger import canonical_logger, elapsed_ms
from src.common.utils import open_source
from src.mapping import MappingIndex
from src.report import ClickReport
from src.stream import decode_clicks


# --- 1. ESQUEMA EXPLÍCITO (Optimización Polars) ---

click_schema = {
    "bitlink": pl.String,
    "user_agent": pl.String,
    "timestamp": pl.String,
    "referrer": pl.String,
    "remote_ip": pl.String,
}

_EMPTY_ARRAY = re.compile(rb"\s*\[\s*\]\s*")


def read_clicks(file_path: str) -> pl.DataFrame:
    """Loads the whole decodes array into a DataFrame (time over memory)."""
    with open_source(file_path) as f:
        try:
            raw = f.read()
        except OSError as e:
            raise SourceError(file_path, str(e)) from e

    head = raw.lstrip()[:1]
    if head != b"[":
        got = repr(head.decode(errors="replace")) if head else "end of input"
        raise FramingError(f"expected JSON array, got {got}")
    if _EMPTY_ARRAY.fullmatch(raw):
        return pl.DataFrame(schema=click_schema)

    try:
        return pl.read_json(io.BytesIO(raw), schema=click_schema)
    except pl.exceptions.PolarsError as e:
        locate_decode_error(raw)
        raise DecodeError(None, str(e)) from e


def locate_decode_error(raw: bytes):
    """Re-frames the rejected bytes record by record so the DecodeError names its index."""
    for _ in decode_clicks(io.BytesIO(raw)):
        pass


def mapping_frame(mapping: MappingIndex) -> pl.DataFrame:
    bitlinks, long_urls = [], []
    for bitlink, long_url in mapping.items():
        bitlinks.append(bitlink)
        long_urls.append(long_url)
    return pl.DataFrame(
        {"bitlink": bitlinks, "long_url": long_urls},
        schema={"bitlink": pl.String, "long_url": pl.String},
    )


# Modular Functional Blocks (vectorized)
parse_clicks = lambda df: df.with_columns(
    pl.col("bitlink", "referrer", "timestamp").fill_null("")
).with_columns(
    pl.col("timestamp")
    .str.to_datetime(format=TIMESTAMP_FORMAT, strict=False)
    .alias("clicked_at"),
    pl.col("timestamp")
    .str.contains(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")
    .alias("well_formed"),
)

year_filter = lambda lf, year: (
    lf.filter(pl.col("clicked_at").dt.year() == year) if year else lf
)

resolve_destinations = lambda lf, mapping_df: (
    lf.join(mapping_df.lazy(), on="bitlink", how="left").with_columns(
        pl.coalesce("long_url", "bitlink").alias("destination"),
        pl.col("timestamp").str.slice(0, 10).alias("date"),
    )
)

key_counter = lambda lf, key: lf.group_by(key, maintain_order=True).len()


def first_bad_timestamp(parsed: pl.DataFrame) -> str | None:
    bad = parsed.filter(~pl.col("well_formed") | pl.col("clicked_at").is_null())
    return bad.get_column("timestamp")[0] if bad.height else None


@canonical_logger(event_name="clicks_time_execution")
def clicks_time(
    mapping_path: str,
    events_path: str,
    config: AggregationConfig | None = None,
    ctx=None,
) -> ClickReport:
    """
    Same analytics as clicks_memory, computed over an in-memory Polars frame.
    All-or-nothing: a bad timestamp aborts before any count is produced.
    """
    config = config or AggregationConfig()
    ctx.add_context(
        mapping_path=mapping_path,
        events_path=events_path,
        filter_year=config.filter_year,
    )

    with ctx.step("load_mapping"):
        mapping = MappingIndex.load(mapping_path)
        mapping_df = mapping_frame(mapping)
    ctx.add_metric("mapping_entries", len(mapping))

    t0 = time.perf_counter()
    with ctx.step("read_and_parse"):
        parsed = parse_clicks(read_clicks(events_path))
        bad = first_bad_timestamp(parsed)
        if bad is not None:
            raise TimestampError(bad)

    # Plan: filtro -> join -> conteos, una sola ejecución con collect_all
    with ctx.step("execution_collect"):
        kept_lf = year_filter(parsed.lazy(), config.filter_year)
        resolved_lf = resolve_destinations(kept_lf, mapping_df)
        unknown_lf = kept_lf.filter(
            ~pl.col("bitlink").is_in(mapping_df.get_column("bitlink"))
        ).select("bitlink")
        by_destination, by_referrer, by_date, unknown = pl.collect_all(
            [
                key_counter(resolved_lf, "destination"),
                key_counter(resolved_lf, "referrer"),
                key_counter(resolved_lf, "date"),
                unknown_lf,
            ]
        )

    state = AggregationState()
    state.processed_records = parsed.height
    state.clicks_by_destination.update(dict(by_destination.iter_rows()))
    state.clicks_by_referrer.update(dict(by_referrer.iter_rows()))
    state.clicks_by_date.update(dict(by_date.iter_rows()))
    state.total_clicks = sum(state.clicks_by_date.values())
    state.filtered_out = state.processed_records - state.total_clicks
    for bitlink in unknown.get_column("bitlink").to_list():
        state.record_unknown(bitlink)
    state.processing_time_ms = elapsed_ms(t0)

    ctx.add_metric("processed_records", state.processed_records)
    ctx.add_metric("filtered_out", state.filtered_out)
    ctx.add_metric("total_clicks", state.total_clicks)
    if state.unknown_short_links:
        ctx.register_error(
            "join_miss",
            "clicks on bitlinks without mapping",
            count=len(state.unknown_short_links),
            distinct=len(state.unresolved),
        )

    report = ClickReport(state, config)
    ctx.add_metric("output_rows", len(report.final_summary()))
    return report
