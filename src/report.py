from collections.abc import Callable, Mapping

import orjson

from src.aggregator import AggregationState
from src.common.config import AggregationConfig


class ClickReport:
    """Read-only views over a finished AggregationState."""

    def __init__(self, state: AggregationState, config: AggregationConfig | None = None):
        self.state = state
        self.config = config or AggregationConfig()

    def ranked_entries(
        self,
        counts: Mapping[str, int],
        exclude: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, int]]:
        """
        (key, count) pairs sorted by count in the configured direction.
        Empty keys and keys matched by ``exclude`` are dropped. The sort is
        stable, so equal counts keep the map's insertion order.
        """
        items = [
            (key, count)
            for key, count in counts.items()
            if key and not (exclude and exclude(key))
        ]
        return sorted(items, key=lambda kv: kv[1], reverse=self.config.sort_descending)

    def is_unresolved(self, key: str) -> bool:
        """True iff ``key`` was recorded as a bitlink with no mapping."""
        return key in self.state.unresolved

    def top_destinations(self) -> list[tuple[str, int]]:
        return self.ranked_entries(self.state.clicks_by_destination)

    def top_referrers(self) -> list[tuple[str, int]]:
        return self.ranked_entries(self.state.clicks_by_referrer)

    def top_dates(self) -> list[tuple[str, int]]:
        return self.ranked_entries(self.state.clicks_by_date)[: self.config.top_dates]

    def unknown_sample(self) -> list[str]:
        return self.state.unknown_short_links[: self.config.unknown_sample]

    def final_summary(self) -> list[tuple[str, int]]:
        """Ranked destinations with every unresolved bitlink left out."""
        return self.ranked_entries(
            self.state.clicks_by_destination, exclude=self.is_unresolved
        )

    def final_summary_json(self) -> str:
        return orjson.dumps([{url: n} for url, n in self.final_summary()]).decode()

    def to_dict(self) -> dict:
        state = self.state
        return {
            "filter_year": self.config.filter_year,
            "sort_descending": self.config.sort_descending,
            "processed_records": state.processed_records,
            "filtered_out": state.filtered_out,
            "total_clicks": state.total_clicks,
            "unknown_short_links": len(state.unknown_short_links),
            "processing_time_ms": state.processing_time_ms,
            "clicks_by_destination": self.top_destinations(),
            "clicks_by_referrer": self.top_referrers(),
            "clicks_by_date": self.top_dates(),
            "unknown_sample": self.unknown_sample(),
            "final_summary": [{url: n} for url, n in self.final_summary()],
        }

    def render(self) -> str:
        state = self.state
        lines = ["=== Aggregation Results ==="]
        if self.config.filter_year:
            lines.append(f"Filter Year: {self.config.filter_year}")
            lines.append(f"Records Filtered Out: {state.filtered_out}")
        lines.append(f"Total Records Processed: {state.processed_records}")
        lines.append(f"Total Clicks: {state.total_clicks}")
        lines.append(f"Unknown Bitlinks: {len(state.unknown_short_links)}")
        if state.processing_time_ms:
            lines.append(f"Processing Time: {state.processing_time_ms} ms")

        lines += ["", "--- Top URLs by Clicks ---"]
        lines += [f"{url}: {n} clicks" for url, n in self.top_destinations()]

        lines += ["", "--- Top Referrers ---"]
        lines += [f"{ref}: {n} clicks" for ref, n in self.top_referrers()]

        lines += ["", f"--- Clicks by Date (first {self.config.top_dates}) ---"]
        lines += [f"{day}: {n} clicks" for day, n in self.top_dates()]

        if state.unknown_short_links:
            lines += ["", f"--- Unknown Bitlink Clicks (first {self.config.unknown_sample}) ---"]
            lines += self.unknown_sample()

        lines += [
            "",
            "Note: Shortlinks without mapping are excluded from the final summary.",
            "",
            "Final Summary:",
            self.final_summary_json(),
        ]
        return "\n".join(lines) + "\n"
