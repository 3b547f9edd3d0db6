#!/usr/bin/env python3
"""
Module to parse HDMA gradient ASM files and render a preview of them.

Every table starts with a label line followed by one `db` line per row:
- db $00             end of the table
- db $01-$80         repeat the data for that many scanlines
- db $81-$FF         (count - 0x80) scanlines, each with its own data

Data follows either as bytes (`db $05,$2A,$4B`) or as words
(`db $05 : dw $1234`, one `dw` per scanline in continuous rows).

Usage:
    python render_gradient.py gradient.asm preview.png
"""
from PIL import Image
import numpy as np
import argparse
import sys

SCREEN_WIDTH = 256
SCREEN_HEIGHT = 224

CONT_BIT = 0x80

# Fixed colour register channel bits
RED_BIT = 0x20
GREEN_BIT = 0x40
BLUE_BIT = 0x80


class DecodedTable:
    """A table read back from the ASM file."""

    def __init__(self, name, words=False):
        self.name = name
        self.words = words
        self.scanlines = []
        self.finished = False

    def __repr__(self):
        return f"DecodedTable({self.name!r}, {len(self.scanlines)} scanlines)"


def _parse_hex(token, line_number):
    token = token.strip()
    if not token.startswith('$'):
        raise ValueError(f"Line {line_number}: expected a hex value, got {token!r}")
    try:
        return int(token[1:], 16)
    except ValueError:
        raise ValueError(f"Line {line_number}: invalid hex value {token!r}") from None


def parse_row(line, line_number):
    """Parse one `db` line. Returns (count_byte, groups, words)."""
    segments = line.split(' : ')
    head = segments[0].strip()
    if not head.startswith('db '):
        raise ValueError(f"Line {line_number}: expected a db directive, got {line!r}")
    head_tokens = head[3:].split(',')
    count = _parse_hex(head_tokens[0], line_number)
    if count > 0xFF:
        raise ValueError(f"Line {line_number}: count byte ${count:X} doesn't fit in a byte")
    data_bytes = [_parse_hex(t, line_number) for t in head_tokens[1:]]

    groups = []
    for segment in segments[1:]:
        segment = segment.strip()
        if not segment.startswith('dw '):
            raise ValueError(f"Line {line_number}: expected a dw directive, got {segment!r}")
        group = []
        for token in segment[3:].split(','):
            word = _parse_hex(token, line_number)
            group.extend((word & 0xFF, (word >> 8) & 0xFF))
        groups.append(tuple(group))
    words = bool(groups)

    if words and data_bytes:
        raise ValueError(f"Line {line_number}: mixed byte and word data")

    n_groups = count - CONT_BIT if count > CONT_BIT else 1
    if not words and data_bytes:
        if len(data_bytes) % n_groups:
            raise ValueError(f"Line {line_number}: {len(data_bytes)} bytes can't be split into {n_groups} scanlines")
        size = len(data_bytes) // n_groups
        groups = [tuple(data_bytes[i:i + size]) for i in range(0, len(data_bytes), size)]

    if count > CONT_BIT and len(groups) != n_groups:
        raise ValueError(f"Line {line_number}: continuous row of {n_groups} scanlines has {len(groups)} entries")
    if count <= CONT_BIT and len(groups) > 1:
        raise ValueError(f"Line {line_number}: repeat row has {len(groups)} entries")

    return count, groups, words


def parse_tables(text):
    """Parse all tables in an ASM file into per-scanline data."""
    tables = []
    table = None

    for line_number, line in enumerate(text.splitlines(), start=1):
        line = line.split(';', 1)[0].strip()
        if not line:
            continue
        if line.endswith(':') and ' ' not in line:
            table = DecodedTable(line[:-1])
            tables.append(table)
            continue
        if table is None:
            raise ValueError(f"Line {line_number}: data before the first table label")
        if table.finished:
            raise ValueError(f"Line {line_number}: data after the end of table {table.name}")

        count, groups, words = parse_row(line, line_number)
        if count == 0 and not groups:
            table.finished = True
            continue
        if words:
            table.words = True

        if count == 0:
            # The hardware stops the channel at any zero count byte, the
            # preview keeps reading the table instead.
            print(f"Warning: Line {line_number}: zero count row in table {table.name} "
                  "ends the HDMA channel on hardware", file=sys.stderr)

        if count > CONT_BIT:
            table.scanlines.extend(groups)
        else:
            table.scanlines.extend(groups * count)

    return tables


def expand_colour(value):
    """5-bit colour to 8-bit (43210 -> 43210432)."""
    return (value << 3) | (value >> 2)


def _apply_fixed_colour(state, data):
    for byte in data:
        value = byte & 0x1F
        if byte & RED_BIT:
            state[0] = value
        if byte & GREEN_BIT:
            state[1] = value
        if byte & BLUE_BIT:
            state[2] = value


def _apply_cgram_colour(state, data):
    # [low, high] or [0x00, index, low, high]
    low, high = (data[2], data[3]) if len(data) >= 4 else (data[0], data[1])
    colour = low | (high << 8)
    state[0] = colour & 0x1F
    state[1] = (colour >> 5) & 0x1F
    state[2] = (colour >> 10) & 0x1F


def render_gradient(tables, height=None, width=SCREEN_WIDTH):
    """Render the decoded tables to an RGB image.

    Each table updates the colour once per scanline until it runs out of
    data, after which its last value stays.
    """
    if height is None:
        height = max([SCREEN_HEIGHT] + [len(t.scanlines) for t in tables])

    img = np.zeros((height, width, 3), dtype=np.uint8)
    state = [0, 0, 0]

    for y in range(height):
        for table in tables:
            if y >= len(table.scanlines):
                continue
            if table.words:
                _apply_cgram_colour(state, table.scanlines[y])
            else:
                _apply_fixed_colour(state, table.scanlines[y])
        img[y, :] = [expand_colour(v) for v in state]

    return Image.fromarray(img, 'RGB')


def render_gradient_file(input_file, output_file, height=None, width=SCREEN_WIDTH):
    """Parse an ASM file and save a preview PNG."""
    with open(input_file, 'r') as f:
        tables = parse_tables(f.read())

    for table in tables:
        print(f"Table {table.name}: {len(table.scanlines)} scanlines ({'words' if table.words else 'bytes'})")

    render_gradient(tables, height=height, width=width).save(output_file)
    print(f"Saved {output_file}")
    return tables


def main():
    parser = argparse.ArgumentParser(description="Render an HDMA gradient ASM file to a PNG preview")
    parser.add_argument('input', help='Input ASM file')
    parser.add_argument('output', help='Output PNG file')
    parser.add_argument('--width', type=int, default=SCREEN_WIDTH, help=f'Width of the preview (default: {SCREEN_WIDTH})')
    parser.add_argument('--height', type=int, default=None,
                        help=f'Height of the preview (default: longest table, at least {SCREEN_HEIGHT})')
    args = parser.parse_args()

    render_gradient_file(args.input, args.output, height=args.height, width=args.width)


if __name__ == "__main__":
    main()
