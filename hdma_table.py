"""
HDMA table model, coalescing and assembly output.

An HDMA table is a list of rows. Each row is one of:
- Repeat: the same payload for `count` scanlines
- Continuous: a new payload on every scanline (count implied by the list)
- Finish: the terminating zero byte

Payloads are always 4 bytes wide since that is the most HDMA can send per
scanline; only the first `row_size` bytes of a table are written out.
"""

BYTES = 'bytes'
WORDS = 'words'
WRITE_MODES = (BYTES, WORDS)

# Scanline limits of a single physical row.
MAX_REP_ROWS = 0x80
MAX_CONT_ROWS = 0x7F

# OR'd into the count byte to mark a continuous row.
CONT_BIT = 0x80


def _pad_payload(data):
    """Truncate or zero-pad a payload to exactly 4 bytes."""
    return bytes(data[:4]).ljust(4, b'\x00')


class Repeat:
    """Same payload for `count` scanlines."""

    __slots__ = ('count', 'data')

    def __init__(self, count, data):
        self.count = count
        self.data = data

    def __eq__(self, other):
        return isinstance(other, Repeat) and (self.count, self.data) == (other.count, other.data)

    def __repr__(self):
        return f"Repeat({self.count}, {self.data.hex()})"


class Continuous:
    """One payload per scanline, in order."""

    __slots__ = ('data',)

    def __init__(self, data):
        self.data = data

    def __eq__(self, other):
        return isinstance(other, Continuous) and self.data == other.data

    def __repr__(self):
        return f"Continuous([{', '.join(d.hex() for d in self.data)}])"


class Finish:
    """End of the table."""

    __slots__ = ()

    def __eq__(self, other):
        return isinstance(other, Finish)

    def __repr__(self):
        return "Finish()"


ROW_TYPES = (Repeat, Continuous, Finish)


def new_repeat(count, data):
    """Create a repeat row, padding the payload to four bytes."""
    if count < 1:
        raise ValueError(f"Repeat count must be at least 1 (got {count})")
    return Repeat(count, _pad_payload(data))


def new_scanline(data):
    """Create a repeat row of a single scanline."""
    return new_repeat(1, data)


def new_continuous(data, data_size):
    """Create a continuous row from a flat byte sequence.

    The bytes are split into groups of `data_size` (1-4), each stored in its
    own 4-byte slot. If the data doesn't divide evenly, the last group is
    padded with zeroes.
    """
    if data_size < 1 or data_size > 4:
        raise ValueError(f"Continuous step size must be between 1 and 4 (got {data_size})")
    data = bytes(data)
    row_data = []
    for start in range(0, len(data), data_size):
        row_data.append(_pad_payload(data[start:start + data_size]))
    return Continuous(row_data)


def _check_row_size(row_size):
    if row_size < 1 or row_size > 4:
        raise ValueError(f"Row size must be between 1 and 4 (got {row_size})")


def _check_max_row_count(max_row_count):
    # The count byte has to fit in two hex digits
    if max_row_count < 1 or max_row_count > 0xFF:
        raise ValueError(f"Maximum row count must be between 1 and 0xFF (got {max_row_count})")


def _copy_row(row):
    """Copy a row so the table never shares a continuous run with its caller."""
    if isinstance(row, Continuous):
        return Continuous(list(row.data))
    return row


class HdmaTable:
    """An HDMA table plus what is needed to write it out.

    Liberties are taken for row_size which can also be 3 (real HDMA only
    writes 1, 2 or 4 bytes) and for max_row_count so pseudo-tables such as
    big gradients can hold more than 0x80 scanlines per row.
    """

    def __init__(self, rows, row_size, write_mode, table_name, max_row_count):
        _check_row_size(row_size)
        _check_max_row_count(max_row_count)
        if write_mode not in WRITE_MODES:
            raise ValueError(f"Unknown write mode: {write_mode!r}")
        self.rows = list(rows) if rows is not None else []
        self.row_size = row_size
        self.write_mode = write_mode
        self.table_name = table_name
        self.max_row_count = max_row_count

    @classmethod
    def new_real_table(cls, rows, row_size, write_mode, table_name):
        """An actual HDMA table, limited to 0x80 scanlines per repeat row."""
        return cls(rows, row_size, write_mode, table_name, MAX_REP_ROWS)

    def push(self, row):
        self.rows.append(row)

    def scanline_count(self):
        """Number of scanlines the table describes."""
        total = 0
        for row in self.rows:
            if isinstance(row, Repeat):
                total += row.count
            elif isinstance(row, Continuous):
                total += len(row.data)
        return total

    def coagulate(self):
        """Merge single scanlines into repeat and continuous rows.

        Afterwards the final repeat row is cut to one scanline (HDMA is over
        by then, any more is wasted space) and the terminator is appended.
        """
        old = self.rows
        self.rows = []
        table = []

        for row in old:
            if not table:
                table.append(_copy_row(row))
                continue
            last = table[-1]

            if isinstance(last, Repeat) and isinstance(row, Repeat):
                if last.data == row.data:
                    # Identical payload, regardless of count
                    table[-1] = Repeat(last.count + row.count, row.data)
                elif last.count == 1 and row.count == 1:
                    # Two different single scanlines start a continuous run
                    table[-1] = Continuous([last.data, row.data])
                else:
                    table.append(_copy_row(row))

            elif isinstance(last, Repeat) and isinstance(row, Continuous):
                if last.count == 1:
                    # The single scanline goes in front of the run
                    table[-1] = Continuous([last.data] + row.data)
                else:
                    table.append(_copy_row(row))

            elif isinstance(last, Continuous) and isinstance(row, Repeat):
                if row.count != 1:
                    table.append(_copy_row(row))
                    continue
                if not last.data:
                    raise RuntimeError("Continuous row is empty while coalescing the table")
                last_data = last.data.pop()
                if last_data == row.data:
                    # Two equal scanlines at the end of a run become a repeat row
                    if not last.data:
                        table.pop()
                    table.append(Repeat(2, last_data))
                else:
                    last.data.append(last_data)
                    last.data.append(row.data)

            elif isinstance(last, Continuous) and isinstance(row, Continuous):
                last.data.extend(row.data)

            else:
                table.append(_copy_row(row))

        if table and isinstance(table[-1], Repeat):
            table[-1] = Repeat(1, table[-1].data)

        table.append(Finish())
        self.rows = table

    def coagulate_repeat(self):
        """Merge identical scanlines only.

        Used for pseudo-tables which aren't real HDMA tables and can hold up
        to 0xFF scanlines per row, so continuous rows aren't needed.
        """
        old = self.rows
        self.rows = []
        table = []

        for row in old:
            if (table and isinstance(table[-1], Repeat) and isinstance(row, Repeat)
                    and table[-1].data == row.data):
                table[-1] = Repeat(table[-1].count + row.count, row.data)
            else:
                table.append(_copy_row(row))

        table.append(Finish())
        self.rows = table

    def physical_rows(self):
        """Yield (count_byte, payloads) for every line of the written table.

        Repeat rows longer than max_row_count and continuous rows longer than
        0x7F scanlines are split over multiple lines.
        """
        for row in self.rows:
            if isinstance(row, Repeat):
                count = row.count
                while True:
                    if count < self.max_row_count:
                        yield count, [row.data]
                        break
                    yield self.max_row_count, [row.data]
                    count -= self.max_row_count
            elif isinstance(row, Continuous):
                total = len(row.data)
                for start in range(0, total, MAX_CONT_ROWS):
                    chunk = row.data[start:start + MAX_CONT_ROWS]
                    if start + MAX_CONT_ROWS < total:
                        yield 0xFF, chunk
                    else:
                        yield CONT_BIT + len(chunk), chunk
            elif isinstance(row, Finish):
                yield 0, []
            else:
                raise TypeError(f"Not an HDMA row: {row!r}")

    def _format_payload(self, data):
        if self.write_mode == BYTES:
            return ''.join(f",${data[i]:02X}" for i in range(self.row_size))
        # Words are written high byte first, i.e. little endian in the ROM
        if self.row_size <= 2:
            return f" : dw ${data[1]:02X}{data[0]:02X}"
        return f" : dw ${data[1]:02X}{data[0]:02X},${data[3]:02X}{data[2]:02X}"

    def write_table(self):
        """Return the table as assembly, label first."""
        lines = [f"{self.table_name}:"]
        for count, payloads in self.physical_rows():
            lines.append(f"db ${count:02X}" + ''.join(self._format_payload(d) for d in payloads))
        return '\n'.join(lines) + '\n'

    def data_size(self):
        """Size in bytes of the table once assembled."""
        if self.write_mode == BYTES:
            group_size = self.row_size
        else:
            group_size = 2 if self.row_size <= 2 else 4
        size = 0
        for _, payloads in self.physical_rows():
            size += 1 + group_size * len(payloads)
        return size
