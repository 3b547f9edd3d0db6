#!/usr/bin/env python3
"""
Rip an HDMA gradient from a column of an image.

Usage:
    python convert_gradient.py input.png -o gradient.asm [-m mode]
"""
from PIL import Image
import numpy as np
import argparse
import sys

from hdma_table import HdmaTable, Finish, new_scanline, BYTES, WORDS

# Output heights above this don't fit in a real HDMA table
MAX_SCANLINES = 224

# Scanlines per row of a big gradient (not a real HDMA table)
BIG_GRADIENT_ROWS = 0xFF

MACROS_FILE = 'hdma_macros.asm'

RED = 0
GREEN = 1
BLUE = 2
CHANNEL_NAMES = ('red', 'green', 'blue')

# Bits selecting the channel when writing the fixed colour register
CHANNEL_BITS = (0x20, 0x40, 0x80)

SINGLE = 'single'
DOUBLE = 'double'
BIG = 'big'
CGRAM = 'cgram'
AUTO = 'auto'

MODE_ALIASES = {
    's': SINGLE, SINGLE: SINGLE,
    'd': DOUBLE, DOUBLE: DOUBLE,
    'b': BIG, BIG: BIG,
    'c': CGRAM, CGRAM: CGRAM,
    'a': AUTO, AUTO: AUTO,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create an HDMA gradient from a column of an image")
    parser.add_argument('input', nargs='?', help='The image to rip (asked for interactively if omitted)')
    parser.add_argument('-x', '--xpos', type=int, default=0, help='X position of the column to rip (default: 0)')
    parser.add_argument('-s', '--start', type=int, default=0, help='First Y position of the column to rip (default: 0)')
    parser.add_argument('-e', '--end', type=int, default=None, help='Final Y position to rip (default: height of image)')
    parser.add_argument('-o', '--output', type=str, default='gradient.asm', help='Name of the ASM file')
    parser.add_argument(
        '-H', '--height',
        type=int,
        default=None,
        help=f'Height of the output table (default: height of image, at least {MAX_SCANLINES})'
    )
    parser.add_argument(
        '-m', '--mode',
        choices=sorted(MODE_ALIASES),
        default=AUTO,
        help='Table mode: single (three fixed colour tables), double (one single and one dual fixed colour table), '
             'big (one fixed colour pseudo-table for scrolling gradients), cgram (one CG-RAM colour table) or '
             f'auto (big above {MAX_SCANLINES} scanlines, double otherwise)'
    )
    parser.add_argument('-c', '--cgram', type=int, default=None, help='Colour index in CG-RAM (cgram mode only)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Display settings and the amount of data')
    parser.add_argument('--no-optimise', action='store_true', help='Write one row per scanline instead of coalescing rows')
    args = parser.parse_args(argv)

    print("HDMA Gradient Ripper")
    print("====================")

    if args.input is None:
        input_name = input("Enter the image to be ripped: ").strip()
        output_name = input("Enter the name of the ASM file: ").strip()
    else:
        input_name = args.input
        output_name = args.output

    try:
        image = load_image(input_name)
    except OSError as e:
        print(f"Error: Couldn't open {input_name}: {e}")
        sys.exit(1)

    image_height = image.height
    height = args.height if args.height is not None else max(image_height, MAX_SCANLINES)
    y_start = args.start
    y_end = args.end if args.end is not None else image_height
    mode = resolve_mode(MODE_ALIASES[args.mode], height)

    try:
        check_settings(image, args.xpos, y_start, y_end, height, args.cgram)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # Questionable but valid input
    if height < MAX_SCANLINES:
        print(f"Warning: The output height is {height} which is smaller than {MAX_SCANLINES}. "
              f"A height of at least {MAX_SCANLINES} is recommended.", file=sys.stderr)
    if mode != BIG and height > MAX_SCANLINES:
        print(f"Warning: The output height is {height} which is larger than {MAX_SCANLINES}. "
              "A big gradient is recommended instead.", file=sys.stderr)
    if args.cgram is not None and mode != CGRAM:
        print("Note: --cgram is ignored outside of cgram mode")

    if args.verbose:
        print(f"Image: {input_name} ({image.width}x{image_height})")
        print(f"Output height: {height}")
        print(f"Input X position: {args.xpos}")
        print(f"Input Y positions: {y_start}-{y_end} ({y_end - y_start} rows)")
        print(f"Mode: {mode}")

    colours = get_rgb_from_image(image, args.xpos, y_start, y_end, height)
    tables = create_tables(colours, mode, cgram_index=args.cgram, optimise=not args.no_optimise)

    if args.verbose:
        for table in tables:
            print(f"  {table.table_name}: {len(table.rows)} rows, {table.data_size()} bytes")

    save_output_asm(tables_to_asm(tables, mode), output_name)
    print("HDMA table successfully generated!")
    macro = macro_for_mode(mode, args.cgram)
    if macro is not None:
        print(f"Enable it with %{macro}() from {MACROS_FILE}")


def load_image(input_path):
    """Load an image as RGB."""
    return Image.open(input_path).convert('RGB')


def resolve_mode(mode, height):
    """Pick the actual table mode for auto mode."""
    if mode == AUTO:
        return BIG if height > MAX_SCANLINES else DOUBLE
    return mode


def check_settings(image, x_pos, y_start, y_end, height, cgram_index=None):
    """Raise ValueError if the rip settings don't fit the image."""
    if x_pos < 0 or x_pos >= image.width:
        raise ValueError(f"The X position {x_pos} is located outside of the image (width {image.width})")
    if y_start < 0 or y_start > image.height or y_end > image.height:
        raise ValueError(f"The Y positions {y_start}-{y_end} are located outside of the image (height {image.height})")
    if y_start >= y_end:
        raise ValueError(f"The start Y position ({y_start}) must be above the end Y position ({y_end})")
    if height < 1:
        raise ValueError(f"The output height must be positive (got {height})")
    if cgram_index is not None and not 0 <= cgram_index <= 0xFF:
        raise ValueError(f"The CG-RAM index must be between 0 and 255 (got {cgram_index})")


def get_rgb_from_image(image, x_input, y_start, y_end, output_height):
    """Sample one column of the image, stretched or squashed to output_height rows.

    Uses nearest neighbour: output row i reads source row
    y_start + i * (y_end - y_start) / output_height, rounded half up.
    Returns an (output_height, 3) uint8 array.
    """
    pixels = np.asarray(image.convert('RGB'), dtype=np.uint8)
    delta_y = (y_end - y_start) / output_height
    rows = np.floor(y_start + np.arange(output_height) * delta_y + 0.5).astype(np.int64)
    rows = np.clip(rows, y_start, y_end - 1)
    return pixels[rows, x_input]


# SNES colours are 15-bit BGR. The lowest three bits of an 8-bit channel are
# copies of bits 2-4 of the 5-bit value (---43210 -> 43210432), so dropping
# them is enough to get the 5-bit colour.

def to_fixed_colour(colour, channel):
    """Fixed colour register value for one channel (5-bit value plus channel bit)."""
    return (int(colour[channel]) >> 3) | CHANNEL_BITS[channel]


def to_cgram_colour(colour):
    """Pack a colour into a 15-bit CG-RAM value (red in the lowest bits)."""
    red = int(colour[RED]) >> 3
    green = int(colour[GREEN]) >> 3
    blue = int(colour[BLUE]) >> 3
    return red | (green << 5) | (blue << 10)


def create_mode_0_tables(colours):
    """Three single byte tables, one per channel."""
    tables = [HdmaTable.new_real_table([], 1, BYTES, f"{name}_table") for name in CHANNEL_NAMES]

    for colour in colours:
        for channel, table in enumerate(tables):
            table.push(new_scanline([to_fixed_colour(colour, channel)]))

    return tables


def get_colour_count(colours):
    """Count how often each channel changes over the gradient.

    Returns a list of (count, channel) tuples, counts start at 1 for the
    first colour.
    """
    colours = np.asarray(colours, dtype=np.int16).reshape(-1, 3)
    counts = []
    for channel in (RED, GREEN, BLUE):
        changes = int(np.count_nonzero(np.diff(colours[:, channel]))) if len(colours) > 1 else 0
        counts.append((1 + changes, channel))
    return counts


def choose_single_channel(colours):
    """Pick the channel which gets the single byte table in double mode.

    The two channels with the closest amount of colour changes share a table.
    If one channel has 7 changes and the others 23 and 34, combining the
    latter two wastes the least space.
    """
    colour_count = sorted(get_colour_count(colours), key=lambda x: x[0])
    if abs(colour_count[0][0] - colour_count[1][0]) > abs(colour_count[1][0] - colour_count[2][0]):
        return colour_count[0][1]
    return colour_count[2][1]


def create_mode_2_tables(colours):
    """A single byte table for one channel and a two byte table for the other two."""
    single_channel = choose_single_channel(colours)
    dual_channels = [c for c in (RED, GREEN, BLUE) if c != single_channel]
    dual_name = '_'.join(CHANNEL_NAMES[c] for c in dual_channels)

    single_table = HdmaTable.new_real_table([], 1, BYTES, f"{CHANNEL_NAMES[single_channel]}_table")
    dual_table = HdmaTable.new_real_table([], 2, BYTES, f"{dual_name}_table")

    for colour in colours:
        single_table.push(new_scanline([to_fixed_colour(colour, single_channel)]))
        dual_table.push(new_scanline([to_fixed_colour(colour, c) for c in dual_channels]))

    return [single_table, dual_table]


def create_big_gradient_table(colours):
    """One three byte pseudo-table holding all channels."""
    table = HdmaTable([], 3, BYTES, "gradient_table", BIG_GRADIENT_ROWS)

    for colour in colours:
        table.push(new_scanline([to_fixed_colour(colour, c) for c in (RED, GREEN, BLUE)]))

    return table


def create_cgram_table(colours, cgram_index=None):
    """One word table of CG-RAM colours.

    With a CG-RAM index, every row also writes the index first:
    [0x00, index, low byte, high byte].
    """
    row_size = 2 if cgram_index is None else 4
    table = HdmaTable.new_real_table([], row_size, WORDS, "colour_table")

    for colour in colours:
        cgram_colour = to_cgram_colour(colour)
        low_byte = cgram_colour & 0xFF
        high_byte = (cgram_colour >> 8) & 0xFF
        if cgram_index is None:
            table.push(new_scanline([low_byte, high_byte]))
        else:
            table.push(new_scanline([0x00, cgram_index, low_byte, high_byte]))

    return table


def create_tables(colours, mode, cgram_index=None, optimise=True):
    """Build (and optionally coalesce) the tables for a table mode."""
    if mode == SINGLE:
        tables = create_mode_0_tables(colours)
    elif mode == DOUBLE:
        tables = create_mode_2_tables(colours)
    elif mode == BIG:
        tables = [create_big_gradient_table(colours)]
    elif mode == CGRAM:
        tables = [create_cgram_table(colours, cgram_index)]
    else:
        raise ValueError(f"Unknown table mode: {mode!r}")

    for table in tables:
        if not optimise:
            table.push(Finish())
        elif mode == BIG:
            table.coagulate_repeat()
        else:
            table.coagulate()

    return tables


def tables_to_asm(tables, mode):
    """Join the written tables into the contents of the ASM file."""
    if mode in (SINGLE, DOUBLE):
        return ''.join(table.write_table() + '\n' for table in tables)
    return ''.join(table.write_table() for table in tables)


def macro_for_mode(mode, cgram_index=None):
    """Name of the hdma_macros.asm macro enabling the tables, None for big gradients."""
    if mode == SINGLE:
        return 'hdma_three_channels'
    if mode == DOUBLE:
        return 'hdma_two_channels'
    if mode == CGRAM:
        return 'hdma_cgram' if cgram_index is None else 'hdma_cgram_indexed'
    # Big gradients aren't real HDMA tables
    return None


def write_gradient(image, x_pos, y_start, y_end, height, mode, cgram_index=None, optimise=True):
    """Rip a gradient from the image and return the ASM text."""
    mode = resolve_mode(mode, height)
    colours = get_rgb_from_image(image, x_pos, y_start, y_end, height)
    return tables_to_asm(create_tables(colours, mode, cgram_index=cgram_index, optimise=optimise), mode)


def save_output_asm(text, output_asm):
    print(f"Saving HDMA tables to {output_asm}...")
    with open(output_asm, 'w', newline='\n') as f:
        f.write(text)


if __name__ == "__main__":
    main()
