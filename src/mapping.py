import csv
import io
from collections.abc import Iterable, Sequence
from types import MappingProxyType

from src.common.errors import SourceError
from src.common.utils import open_source


SHORT_LINK_SCHEME = "http://"


def short_link_key(domain: str, hash_: str) -> str:
    """Rebuilds the bitlink exactly as it appears in click events."""
    return f"{SHORT_LINK_SCHEME}{domain}/{hash_}"


class MappingIndex:
    """
    In-memory bitlink -> long URL lookup built from the encodes table.

    The header row is always skipped and rows with fewer than three fields
    (long_url, domain, hash) are dropped and counted in ``skipped_rows``.
    Duplicate bitlinks keep the last row seen.
    """

    def __init__(self, entries: dict[str, str] | None = None, skipped_rows: int = 0):
        self._entries = MappingProxyType(dict(entries or {}))
        self.skipped_rows = skipped_rows

    @classmethod
    def build(cls, rows: Iterable[Sequence[str]]) -> "MappingIndex":
        entries = {}
        skipped = 0
        rows = iter(rows)
        next(rows, None)  # header

        for row in rows:
            if len(row) < 3:
                skipped += 1
                continue
            long_url, domain, hash_ = row[0], row[1], row[2]
            entries[short_link_key(domain, hash_)] = long_url

        return cls(entries, skipped_rows=skipped)

    @classmethod
    def load(cls, file_path: str) -> "MappingIndex":
        """Reads a CSV mapping file (local or gs://) fully into memory."""
        with open_source(file_path) as raw:
            text = io.TextIOWrapper(raw, encoding="utf-8", newline="")
            try:
                return cls.build(csv.reader(text))
            except (csv.Error, UnicodeDecodeError) as e:
                raise SourceError(file_path, f"error reading CSV: {e}") from e
            except OSError as e:
                raise SourceError(file_path, str(e)) from e

    def lookup(self, short_link: str) -> tuple[str, bool]:
        long_url = self._entries.get(short_link)
        if long_url is None:
            return "", False
        return long_url, True

    def items(self):
        return self._entries.items()

    def __contains__(self, short_link: str) -> bool:
        return short_link in self._entries

    def __len__(self) -> int:
        return len(self._entries)
