import copy

import pytest

from hdma_table import (
    BYTES,
    MAX_REP_ROWS,
    WORDS,
    Continuous,
    Finish,
    HdmaTable,
    Repeat,
    new_continuous,
    new_repeat,
    new_scanline,
)


def _p(*values):
    """Four byte payload."""
    return bytes(values).ljust(4, b'\x00')


def _table(values, row_size=1, write_mode=BYTES, name="test_table"):
    table = HdmaTable.new_real_table([], row_size, write_mode, name)
    for value in values:
        table.push(new_scanline([value]))
    return table


def _lines(table):
    return table.write_table().splitlines()


def test_new_repeat_pads_and_truncates() -> None:
    assert new_repeat(3, [1, 2]) == Repeat(3, b'\x01\x02\x00\x00')
    assert new_repeat(1, [1, 2, 3, 4, 5]).data == b'\x01\x02\x03\x04'
    assert new_scanline([7]) == Repeat(1, _p(7))


def test_new_repeat_rejects_empty_count() -> None:
    with pytest.raises(ValueError):
        new_repeat(0, [1])


def test_new_continuous_groups_by_step() -> None:
    row = new_continuous([1, 2, 3, 4, 5], 2)
    assert row == Continuous([_p(1, 2), _p(3, 4), _p(5)])
    assert new_continuous([9, 8, 7], 1).data == [_p(9), _p(8), _p(7)]


@pytest.mark.parametrize("data_size", [0, 5])
def test_new_continuous_rejects_bad_step(data_size: int) -> None:
    with pytest.raises(ValueError):
        new_continuous([1, 2], data_size)


@pytest.mark.parametrize("row_size", [0, 5])
def test_table_rejects_bad_row_size(row_size: int) -> None:
    with pytest.raises(ValueError):
        HdmaTable([], row_size, BYTES, "bad", 0xFF)
    with pytest.raises(ValueError):
        HdmaTable.new_real_table([], row_size, BYTES, "bad")


def test_table_rejects_unknown_write_mode() -> None:
    with pytest.raises(ValueError):
        HdmaTable([], 1, 'longs', "bad", 0xFF)


@pytest.mark.parametrize("max_row_count", [0, -1, 0x100])
def test_table_rejects_bad_max_row_count(max_row_count: int) -> None:
    with pytest.raises(ValueError):
        HdmaTable([new_repeat(3, [1])], 1, BYTES, "bad", max_row_count)


def test_table_smallest_max_row_count() -> None:
    table = HdmaTable([new_repeat(3, [1])], 1, BYTES, "t", 1)
    assert _lines(table)[1:] == ["db $01,$01", "db $01,$01", "db $01,$01", "db $00,$01"]


def test_real_table_ceiling() -> None:
    table = HdmaTable.new_real_table(None, 1, BYTES, "t")
    assert table.max_row_count == MAX_REP_ROWS == 0x80
    assert table.rows == []


def test_coagulate_merges_repeat_then_pushes_different() -> None:
    table = _table([1, 1, 2])
    table.coagulate()
    assert table.rows == [Repeat(2, _p(1)), Repeat(1, _p(2)), Finish()]


def test_coagulate_distinct_values_become_one_continuous_row() -> None:
    table = _table([1, 2, 3])
    table.coagulate()
    assert table.rows == [Continuous([_p(1), _p(2), _p(3)]), Finish()]


def test_coagulate_trailing_pair_splits_off_repeat() -> None:
    table = _table([1, 2, 2])
    table.coagulate()
    # The final repeat is cut down to one scanline
    assert table.rows == [Continuous([_p(1)]), Repeat(1, _p(2)), Finish()]


def test_coagulate_mixed_sequence() -> None:
    values = [5, 5, 5, 1, 2, 3, 3, 4, 4, 4, 4, 9]
    table = _table(values)
    table.coagulate()
    assert table.rows == [
        Repeat(3, _p(5)),
        Continuous([_p(1), _p(2)]),
        Repeat(2, _p(3)),
        Repeat(4, _p(4)),
        Repeat(1, _p(9)),
        Finish(),
    ]
    assert table.scanline_count() == len(values)


def test_coagulate_preserves_scanlines_except_final_repeat() -> None:
    values = [1] * 10 + [2, 3, 4] + [6] * 40 + [7, 7] + [8] * 5
    table = _table(values)
    table.coagulate()
    last = table.rows[-2]
    assert isinstance(last, Repeat) and last.count == 1
    # Only the five trailing scanlines shrink to one
    assert table.scanline_count() == len(values) - 4


def test_coagulate_never_leaves_equal_adjacent_repeats() -> None:
    table = _table([3, 3, 3, 4, 4, 5, 5, 5, 5, 6])
    table.coagulate()
    rows = table.rows[:-1]
    for a, b in zip(rows, rows[1:]):
        if isinstance(a, Repeat) and isinstance(b, Repeat):
            assert a.data != b.data


def test_coagulate_is_idempotent_on_its_output() -> None:
    table = _table([5, 5, 5, 1, 2, 3, 3, 4, 4, 4, 4, 9])
    table.coagulate()
    coalesced = table.rows[:-1]

    again = HdmaTable.new_real_table(copy.deepcopy(coalesced), 1, BYTES, "again")
    again.coagulate()
    assert again.rows[:-1] == coalesced
    assert again.rows[-1] == Finish()


def test_coagulate_empty_table() -> None:
    table = _table([])
    table.coagulate()
    assert table.rows == [Finish()]


def test_coagulate_single_scanline_before_continuous() -> None:
    table = HdmaTable.new_real_table([new_scanline([9]), new_continuous([1, 2], 1)], 1, BYTES, "t")
    table.coagulate()
    assert table.rows == [Continuous([_p(9), _p(1), _p(2)]), Finish()]


def test_coagulate_joins_continuous_rows() -> None:
    table = HdmaTable.new_real_table([new_continuous([1, 2], 1), new_continuous([3], 1)], 1, BYTES, "t")
    table.coagulate()
    assert table.rows == [Continuous([_p(1), _p(2), _p(3)]), Finish()]


def test_coagulate_drops_emptied_continuous_row() -> None:
    table = HdmaTable.new_real_table([new_continuous([4], 1), new_scanline([4])], 1, BYTES, "t")
    table.coagulate()
    assert table.rows == [Repeat(1, _p(4)), Finish()]


def test_coagulate_leaves_shared_rows_alone() -> None:
    rows = [new_continuous([1, 2], 1), new_scanline([3]), new_scanline([4])]
    first = HdmaTable.new_real_table(rows, 1, BYTES, "first")
    second = HdmaTable.new_real_table(rows, 1, BYTES, "second")

    first.coagulate()
    second.coagulate()

    assert rows[0] == Continuous([_p(1), _p(2)])
    assert first.rows == second.rows == [Continuous([_p(1), _p(2), _p(3), _p(4)]), Finish()]


def test_coagulate_keeps_caller_final_repeat_count() -> None:
    rows = [new_scanline([1]), new_repeat(5, [2])]
    table = HdmaTable.new_real_table(rows, 1, BYTES, "t")
    table.coagulate()
    assert table.rows == [Repeat(1, _p(1)), Repeat(1, _p(2)), Finish()]
    assert rows[1].count == 5


def test_coagulate_fails_on_empty_continuous_row() -> None:
    table = HdmaTable.new_real_table([Continuous([]), new_scanline([1])], 1, BYTES, "t")
    with pytest.raises(RuntimeError):
        table.coagulate()


def test_coagulate_repeat_only_merges_equal_rows() -> None:
    table = _table([1, 1, 2, 2, 2, 3])
    table.coagulate_repeat()
    assert table.rows == [Repeat(2, _p(1)), Repeat(3, _p(2)), Repeat(1, _p(3)), Finish()]


def test_coagulate_repeat_keeps_final_count() -> None:
    table = _table([1, 1, 1])
    table.coagulate_repeat()
    assert table.rows == [Repeat(3, _p(1)), Finish()]


def test_coagulate_repeat_empty_table() -> None:
    table = _table([])
    table.coagulate_repeat()
    assert table.rows == [Finish()]


def test_write_table_bytes() -> None:
    table = _table([1, 1, 2])
    table.coagulate()
    assert table.write_table() == "test_table:\ndb $02,$01\ndb $01,$02\ndb $00\n"


def test_write_table_continuous_bytes() -> None:
    table = HdmaTable.new_real_table([], 2, BYTES, "dual_table")
    for pair in ([0x21, 0x41], [0x22, 0x42], [0x23, 0x43]):
        table.push(new_scanline(pair))
    table.coagulate()
    assert table.write_table() == "dual_table:\ndb $83,$21,$41,$22,$42,$23,$43\ndb $00\n"


def test_write_table_long_continuous_row_is_split() -> None:
    table = HdmaTable.new_real_table([new_continuous(bytes(range(200)), 1)], 1, BYTES, "t")
    lines = _lines(table)
    assert len(lines) == 3
    assert lines[1].startswith("db $FF,")
    assert lines[1].count(',') == 127
    assert lines[2].startswith("db $C9,")
    assert lines[2].count(',') == 73
    assert lines[2].endswith(",$C7")


def test_write_table_continuous_row_of_exactly_0x7f() -> None:
    table = HdmaTable.new_real_table([new_continuous(bytes(range(0x7F)), 1)], 1, BYTES, "t")
    lines = _lines(table)
    assert len(lines) == 2
    assert lines[1].startswith("db $FF,")
    assert lines[1].count(',') == 0x7F


def test_write_table_long_repeat_row_is_split() -> None:
    table = HdmaTable.new_real_table([new_repeat(300, [0x2A])], 1, BYTES, "t")
    assert _lines(table)[1:] == ["db $80,$2A", "db $80,$2A", "db $2C,$2A"]


def test_write_table_exact_multiple_keeps_zero_line() -> None:
    table = HdmaTable.new_real_table([new_repeat(256, [0x2A])], 1, BYTES, "t")
    assert _lines(table)[1:] == ["db $80,$2A", "db $80,$2A", "db $00,$2A"]


def test_write_table_pseudo_table_ceiling() -> None:
    table = HdmaTable([new_repeat(300, [0x3F, 0x40, 0x80])], 3, BYTES, "gradient_table", 0xFF)
    assert _lines(table)[1:] == ["db $FF,$3F,$40,$80", "db $2D,$3F,$40,$80"]


def test_write_table_words() -> None:
    table = HdmaTable.new_real_table([new_repeat(3, [0x34, 0x12]), Finish()], 2, WORDS, "colour_table")
    assert table.write_table() == "colour_table:\ndb $03 : dw $1234\ndb $00\n"


def test_write_table_double_words() -> None:
    table = HdmaTable.new_real_table([new_repeat(1, [0x00, 0x05, 0x34, 0x12])], 4, WORDS, "t")
    assert _lines(table)[1:] == ["db $01 : dw $0500,$1234"]


def test_write_table_continuous_words() -> None:
    table = HdmaTable.new_real_table([new_continuous([0x34, 0x12, 0x78, 0x56], 2)], 2, WORDS, "t")
    assert _lines(table)[1:] == ["db $82 : dw $1234 : dw $5678"]


def test_write_table_only_significant_bytes() -> None:
    table = HdmaTable.new_real_table([new_repeat(2, [1, 2, 3, 4])], 2, BYTES, "t")
    assert _lines(table)[1:] == ["db $02,$01,$02"]


def test_write_table_rejects_foreign_rows() -> None:
    table = HdmaTable.new_real_table([("not", "a", "row")], 1, BYTES, "t")
    with pytest.raises(TypeError):
        table.write_table()


def test_data_size() -> None:
    table = _table([1, 1, 2])
    table.coagulate()
    assert table.data_size() == 5

    words = HdmaTable.new_real_table([new_repeat(1, [0, 5, 0x34, 0x12]), Finish()], 4, WORDS, "t")
    assert words.data_size() == 6

    long_run = HdmaTable.new_real_table([new_continuous(bytes(range(200)), 1)], 1, BYTES, "t")
    assert long_run.data_size() == 2 + 200
