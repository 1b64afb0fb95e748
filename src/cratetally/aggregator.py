from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping

from cratetally.schemas import MatchRecord


class Tally:
    """Category counts for one run.

    Workers keep their own tally and the pipeline merges them at a single
    point, so no locking is needed.
    """

    def __init__(self, counts: Mapping[str, int] | None = None) -> None:
        self.counts: Counter[str] = Counter()
        if counts:
            self.counts.update(counts)

    def record(self, record: MatchRecord) -> None:
        self.counts[record.category] += 1

    def record_all(self, records: Iterable[MatchRecord]) -> None:
        for record in records:
            self.record(record)

    def merge(self, other: Tally | Mapping[str, int]) -> None:
        counts = other.counts if isinstance(other, Tally) else other
        self.counts.update(counts)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def report(self) -> list[tuple[str, int]]:
        return sorted(
            ((category, count) for category, count in self.counts.items() if count),
            key=lambda item: (-item[1], item[0]),
        )
