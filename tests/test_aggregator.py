from __future__ import annotations

import itertools

from cratetally.aggregator import Tally
from cratetally.schemas import ArgumentRecord, ConversionRecord, ExpressionKind


def _argument(kind: ExpressionKind, line: int = 1) -> ArgumentRecord:
    return ArgumentRecord(package="demo", file="src/lib.rs", line=line, macro="println", index=1, kind=kind)


def test_report_sorts_by_count_then_name() -> None:
    tally = Tally()
    for kind in [
        ExpressionKind.OTHER,
        ExpressionKind.IDENTIFIER,
        ExpressionKind.LITERAL,
        ExpressionKind.IDENTIFIER,
        ExpressionKind.FIELD_ACCESS,
    ]:
        tally.record(_argument(kind))

    assert tally.report() == [
        ("identifier", 2),
        ("field-access", 1),
        ("literal", 1),
        ("other", 1),
    ]
    assert tally.total == 5


def test_report_is_independent_of_record_order() -> None:
    records = [
        _argument(ExpressionKind.METHOD_CALL, 1),
        _argument(ExpressionKind.INLINE_CAPTURE, 2),
        _argument(ExpressionKind.METHOD_CALL, 3),
        _argument(ExpressionKind.OPERATOR, 4),
    ]
    expected = None
    for order in itertools.permutations(records):
        tally = Tally()
        tally.record_all(order)
        if expected is None:
            expected = tally.report()
        assert tally.report() == expected


def test_merging_worker_tallies_matches_a_single_tally() -> None:
    records = [
        ConversionRecord("a", "src/lib.rs", 1, "A", "u8", True),
        ConversionRecord("a", "src/lib.rs", 2, "B", "u8", False),
        ConversionRecord("b", "src/lib.rs", 1, "C", "String", True),
    ]
    single = Tally()
    single.record_all(records)

    first, second = Tally(), Tally()
    first.record_all(records[:1])
    second.record_all(records[1:])
    merged = Tally()
    merged.merge(second)
    merged.merge(first.counts)

    assert merged.report() == single.report() == [("has-conversion", 2), ("no-conversion", 1)]
    assert merged.total == len(records)
