from src.aggregator import ClickAggregator
from src.common.config import AggregationConfig
from src.common.logger import canonical_logger
from src.mapping import MappingIndex
from src.report import ClickReport
from src.stream import stream_clicks


@canonical_logger(event_name="clicks_memory_execution")
def clicks_memory(
    mapping_path: str,
    events_path: str,
    config: AggregationConfig | None = None,
    ctx=None,
) -> ClickReport:
    """
    Click analytics in a single streaming pass over the decodes array.
    Only the mapping index and the count maps live in memory; events are
    decoded and aggregated one at a time.
    """
    config = config or AggregationConfig()
    ctx.add_context(
        mapping_path=mapping_path,
        events_path=events_path,
        filter_year=config.filter_year,
    )

    # 1. Mapping index (full load, O(1) lookups)
    with ctx.step("load_mapping"):
        mapping = MappingIndex.load(mapping_path)
    ctx.add_metric("mapping_entries", len(mapping))
    if mapping.skipped_rows:
        ctx.register_error(
            "malformed_mapping_row",
            "rows with fewer than 3 fields were skipped",
            count=mapping.skipped_rows,
        )

    # 2. Stream + aggregate; the counters are reported even if the stream aborts
    aggregator = ClickAggregator(mapping, config)
    state = aggregator.state
    try:
        with ctx.step("stream_and_aggregate"):
            aggregator.start_timing()
            stream_clicks(events_path, aggregator.handle)
            aggregator.stop_timing()
    finally:
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

    # 3. Report view
    report = ClickReport(state, config)
    ctx.add_metric("destinations", len(state.clicks_by_destination))
    ctx.add_metric("output_rows", len(report.final_summary()))
    return report
