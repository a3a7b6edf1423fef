"""Read back and display the values held by multiplier structures.

Values only exist inside a running simulation, so evaluation is split in
two. The ``sample_*`` functions run inside a testbench and copy the bits of
a matrix, of the compressor's columns, or of its output rows into plain
Python objects. :func:`decode` and :func:`render` then work on those
objects alone.
"""

from typing import NamedTuple

from amaranth import C, Cat

from .partial_product import TermKind


# Width of the row label column, e.g. "03 M= 2 S=1 ".
LABEL_WIDTH = len("99 M=99 S=  ")

_GLYPHS = {
    TermKind.SIGN: "sS",
    TermKind.INVERTED_SIGN: "iI",
    TermKind.CORRECTION: "cC",
    TermKind.DATA: "01",
}

_MARKDOWN = {
    TermKind.SIGN: r"$\underline{%d}$",
    TermKind.INVERTED_SIGN: r"$\overline{%d}$",
}


class SampledBit(NamedTuple):
    value: int
    kind: TermKind = TermKind.DATA
    stage: int = 0


class SampledRow(NamedTuple):  # noqa: DOC602,DOC603
    """Bits of one row, as read from a simulation.

    Attributes
    ----------
    index : int
        Row label.
    bits : tuple of SampledBit
        LSB first.
    shift : int
        Column of the LSB.
    multiple : int or None
        Magnitude selected by the row's Booth digit, if it has one.
    negate : int or None
        Negate flag of the row's Booth digit, if it has one.
    signed : bool
        Read the bits as a two's complement number. The samplers never set
        it: matrix rows carry their sign handling in their bits and are
        summed as unsigned vectors. Only hand-built rows use it.
    """

    index: int
    bits: tuple
    shift: int = 0
    multiple: object = None
    negate: object = None
    signed: bool = False

    @property
    def value(self):
        v = sum(b.value << i for i, b in enumerate(self.bits))
        if self.signed and self.bits and self.bits[-1].value:
            v -= 1 << len(self.bits)
        return v


class SampledMatrix(NamedTuple):  # noqa: DOC602,DOC603
    """A set of rows and how to interpret their sum.

    Attributes
    ----------
    rows : tuple of SampledRow
    width : int
        The sum is taken modulo :math:`2^{width}`.
    signed : bool
        Whether the sum is a two's complement number.
    """

    rows: tuple
    width: int
    signed: bool = False

    @property
    def stages(self):
        """Pipeline stages the bits were read from."""
        return {b.stage for row in self.rows for b in row.bits}


def _read(ctx, values):
    bits = ctx.get(Cat(*values))
    return [(bits >> i) & 1 for i in range(len(values))]


def _signed(ctx, signedness):
    return any(s.sample(ctx) for s in signedness)


def sample_matrix(ctx, matrix):
    """Sample a :class:`~boothtree.partial_product.PartialProductMatrix`.

    Parameters
    ----------
    ctx : SimulatorContext
        Testbench context.
    matrix : PartialProductMatrix
        Matrix to read.

    Returns
    -------
    SampledMatrix
    """
    rows = []
    for i, row in enumerate(matrix.rows):
        values = _read(ctx, [t.value for t in row.terms])
        bits = tuple(SampledBit(v, t.kind) for v, t in zip(values, row.terms))

        multiple = negate = None
        if row.digit is not None:
            # One-hot, so the position of the set bit is the magnitude.
            multiple = ctx.get(row.digit.multiples).bit_length()
            negate = ctx.get(row.digit.negate)
        rows.append(SampledRow(i, bits, row.shift, multiple, negate))

    return SampledMatrix(tuple(rows), matrix.width,
                         _signed(ctx, matrix.signedness))


def sample_columns(ctx, columns, matrix):
    """Sample compressor columns, e.g. one :class:`CompressionStep`.

    Row :math:`j` of the result collects the :math:`j`-th bit of every
    column; missing bits read as 0.

    Parameters
    ----------
    ctx : SimulatorContext
        Testbench context.
    columns : sequence of sequence of CompressTerm
        Columns to read.
    matrix : PartialProductMatrix
        Matrix the columns were built from; provides the width and
        signedness.

    Returns
    -------
    SampledMatrix
    """
    depth = max((len(column) for column in columns), default=0)
    rows = []
    for j in range(depth):
        terms = [column[j] if len(column) > j else None for column in columns]
        values = _read(ctx, [C(0, 1) if t is None else t.value
                             for t in terms])
        bits = tuple(SampledBit(v, stage=0 if t is None else t.stage)
                     for v, t in zip(values, terms))
        rows.append(SampledRow(j, bits))

    return SampledMatrix(tuple(rows), len(columns),
                         _signed(ctx, matrix.signedness))


def sample_compressed(ctx, compressor):
    """Sample the two output rows of a :class:`ColumnCompressor`.

    Behind a pipeline register the rows show the operands of the previous
    clock cycle; their bits are then tagged with stage 1.
    """
    stage = compressor.stages - 1
    rows = []
    for i, out in enumerate((compressor.add0, compressor.add1)):
        value = ctx.get(out)
        bits = tuple(SampledBit((value >> c) & 1, stage=stage)
                     for c in range(compressor.width))
        rows.append(SampledRow(i, bits))

    return SampledMatrix(tuple(rows), compressor.width,
                         _signed(ctx, compressor.matrix.signedness))


def _wrap(value, width, signed):
    value &= (1 << width) - 1
    if signed and value >> (width - 1):
        value -= 1 << width
    return value


def decode(matrix):
    """Sum the shifted rows of ``matrix``.

    Parameters
    ----------
    matrix : SampledMatrix
        Sampled rows.

    Returns
    -------
    int
        Sum modulo :math:`2^{width}`, as a two's complement number if
        ``matrix.signed``.
    """
    total = sum(row.value << row.shift for row in matrix.rows)
    return _wrap(total, matrix.width, matrix.signed)


def _glyph(bit):
    return _GLYPHS[bit.kind][bit.value]


def render(matrix):
    """Draw ``matrix`` as a column-aligned table.

    Each column is three characters wide, most significant on the left. A
    row line shows the row label (Booth magnitude ``M`` and negate flag
    ``S`` for digit rows), the row's bits and the row's value modulo the
    matrix width, unsigned and two's complement. A final line shows the
    bits and value of the sum.

    Bit glyphs: ``0``/``1`` data, ``s``/``S`` sign, ``i``/``I`` inverted
    sign, ``c``/``C`` injected correction; the upper case letter marks a 1.

    Parameters
    ----------
    matrix : SampledMatrix
        Rows to draw.

    Returns
    -------
    str
        The table, one line per row plus a header, a rule and the sum,
        without trailing whitespace.

    Raises
    ------
    ValueError
        If ``matrix`` has no rows.
    """
    if not matrix.rows:
        raise ValueError("cannot render a matrix without rows")

    width = matrix.width
    lines = [" " * LABEL_WIDTH +
             "".join(f"{i:<3}" for i in reversed(range(width)))]

    for row in matrix.rows:
        if row.multiple is not None:
            label = f"{row.index:02d} M={row.multiple:>2} S={row.negate} "
        else:
            label = f"{row.index:02d} M=   S=  "
        shifted = row.value << row.shift
        lines.append(
            label +
            "   " * (width - len(row.bits) - row.shift) +
            "".join(_glyph(b) + "  " for b in reversed(row.bits)) +
            "   " * row.shift +
            f" = {_wrap(shifted, width, False)} "
            f"({_wrap(shifted, width, True)})")

    total = _wrap(sum(row.value << row.shift for row in matrix.rows),
                  width, False)
    lines.append("=" * (LABEL_WIDTH + 3*width))
    lines.append(" " * LABEL_WIDTH +
                 "".join(f"{(total >> i) & 1}  "
                         for i in reversed(range(width))) +
                 f" = {total} ({decode(matrix)})")

    return "\n".join(line.rstrip() for line in lines)


def _markdown_row(cells):
    return "| " + " | ".join(cells) + " |"


def render_markdown(matrix):
    r"""Draw ``matrix`` as a Markdown table.

    Same content as :func:`render`, one table row per matrix row plus the
    sum. Sign bits are written as :math:`\underline{s}` and inverted sign
    bits as :math:`\overline{s}`; other bits are plain digits.

    Parameters
    ----------
    matrix : SampledMatrix
        Rows to draw.

    Returns
    -------
    str
        The table.

    Raises
    ------
    ValueError
        If ``matrix`` has no rows.
    """
    if not matrix.rows:
        raise ValueError("cannot render a matrix without rows")

    width = matrix.width
    lines = [
        _markdown_row(["R", "M", "S"] +
                      [str(i) for i in reversed(range(width))] + ["value"]),
        "|:--:" * (3 + width) + "|:--|"
    ]

    for row in matrix.rows:
        if row.multiple is not None:
            cells = [f"{row.index:02d}", str(row.multiple), str(row.negate)]
        else:
            cells = [f"{row.index:02d}", "", ""]
        cells += [""] * (width - len(row.bits) - row.shift)
        cells += [_MARKDOWN.get(b.kind, "%d") % b.value
                  for b in reversed(row.bits)]
        cells += [""] * row.shift
        shifted = row.value << row.shift
        cells.append(f"{_wrap(shifted, width, False)} "
                     f"({_wrap(shifted, width, True)})")
        lines.append(_markdown_row(cells))

    total = _wrap(sum(row.value << row.shift for row in matrix.rows),
                  width, False)
    lines.append(_markdown_row(
        ["", "", ""] +
        [str((total >> i) & 1) for i in reversed(range(width))] +
        [f"{total} ({decode(matrix)})"]))

    return "\n".join(lines)
