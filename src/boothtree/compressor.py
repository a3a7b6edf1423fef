"""Carry-save column compression of partial-product matrices."""

import logging
from typing import NamedTuple

from amaranth import C, Cat, Elaboratable, Module, Signal
from amaranth.lib.wiring import In, Out, Component

from .errors import ConfigError


logger = logging.getLogger(__name__)


# Relative arrival-time estimates, used only to order terms within a column.
SUM_DELAY = 1.0
CARRY_DELAY = 0.75


def _majority(a, b, c):
    return (a & b) | (b & c) | (a & c)


class HalfAdder(Component):
    """Add two bits of equal weight."""

    def __init__(self):
        super().__init__({
            "inp": In(2),
            "sum": Out(1),
            "carry": Out(1)
        })

    def elaborate(self, platform):
        m = Module()
        m.d.comb += [
            self.sum.eq(self.inp.xor()),
            self.carry.eq(self.inp.all())
        ]
        return m


class FullAdder(Component):
    """Add three bits of equal weight."""

    def __init__(self):
        super().__init__({
            "inp": In(3),
            "sum": Out(1),
            "carry": Out(1)
        })

    def elaborate(self, platform):
        m = Module()
        m.d.comb += [
            self.sum.eq(self.inp.xor()),
            self.carry.eq(_majority(self.inp[0], self.inp[1], self.inp[2]))
        ]
        return m


class Compressor42(Component):  # noqa: DOC602,DOC603
    """Reduce four bits plus a carry-in of equal weight to three bits.

    :math:`x_0 + x_1 + x_2 + x_3 + c_{in} = s + 2(c + c_{out})`, where
    :math:`c_{out}` depends only on :math:`x_0 \\ldots x_2`. The
    :math:`c_{out}` of one compressor can thus feed the :math:`c_{in}` of its
    neighbour one column up without forming a carry chain.

    Attributes
    ----------
    inp : In(4)
    cin : In(1)
    sum : Out(1)
        Weight 1.
    carry : Out(1)
        Weight 2.
    cout : Out(1)
        Weight 2.
    """

    def __init__(self):
        super().__init__({
            "inp": In(4),
            "cin": In(1),
            "sum": Out(1),
            "carry": Out(1),
            "cout": Out(1)
        })

    def elaborate(self, platform):
        m = Module()
        partial = Signal()

        m.d.comb += [
            partial.eq(self.inp[:3].xor()),
            self.cout.eq(_majority(self.inp[0], self.inp[1], self.inp[2])),
            self.sum.eq(partial ^ self.inp[3] ^ self.cin),
            self.carry.eq(_majority(partial, self.inp[3], self.cin))
        ]
        return m


class CompressTerm:  # noqa: DOC602,DOC603
    """A bit waiting in a column of the compressor.

    Attributes
    ----------
    value : Value
        1-bit value.
    column : int
        Weight of the bit.
    delay : float
        Estimated arrival time.
    level : int
        Pass that produced the bit; 0 for matrix bits.
    stage : int
        Pipeline stage the bit belongs to; 1 after the register boundary.
    chained : bool
        A 4:2 compressor carry-out not yet consumed by a neighbour.
    """

    __slots__ = ("value", "column", "delay", "level", "stage", "chained",
                 "seq")

    def __init__(self, value, column, seq, *, delay=0.0, level=0, stage=0,
                 chained=False):
        self.value = value
        self.column = column
        self.seq = seq
        self.delay = delay
        self.level = level
        self.stage = stage
        self.chained = chained

    def order(self):
        return (self.delay, self.seq)

    def __repr__(self):
        return (f"CompressTerm(column={self.column}, delay={self.delay}, "
                f"level={self.level}, stage={self.stage})")


class CompressionStep(NamedTuple):
    """Snapshot of the columns after one reduction step."""

    index: int
    pass_index: int
    adder: object
    columns: tuple


class ColumnCompressor(Elaboratable):  # noqa: DOC602,DOC603
    r"""Reduce a partial-product matrix to two rows.

    Columns are processed from least to most significant, in passes. During
    pass :math:`p` only bits that existed when the pass began are combined;
    the sums and carries it produces wait for pass :math:`p+1`. Within a
    column, the earliest-arriving bits are combined first:

    * three or more bits: a full adder (or, in 4:2 mode, a 4:2 compressor
      when a neighbour's carry-out or a fifth bit is available to feed its
      carry-in),
    * two bits while the column still holds more than two: a half adder.

    Passes repeat until every column holds at most two bits. Carries out of
    the most significant column are dropped, so the outputs equal the
    matrix sum modulo :math:`2^{width}`.

    Parameters
    ----------
    matrix : PartialProductMatrix
        Matrix to compress. Its rows are not modified.
    use_4_2 : bool
        Use 4:2 compressors where possible.
    pipeline_pass : int, optional
        Register every live bit after this pass (0-based). If compression
        finishes in fewer passes, the output rows are registered instead.
    domain : str
        Clock domain of the pipeline register.
    record : bool
        Keep a :class:`CompressionStep` per reduction step in
        :attr:`history`.

    Attributes
    ----------
    width : int
        Number of columns.
    columns : list of list of CompressTerm
        Columns after compression.
    add0, add1 : Signal(width)
        Output rows; their sum modulo :math:`2^{width}` equals the matrix
        sum.
    passes : int
        Number of passes performed.
    history : list of CompressionStep
        Only populated when ``record`` is set; entry 0 is the uncompressed
        matrix.

    Raises
    ------
    ConfigError
        If ``pipeline_pass`` is negative.
    RuntimeError
        If compression does not converge.
    """

    def __init__(self, matrix, *, use_4_2=False, pipeline_pass=None,
                 domain="sync", record=False):
        if pipeline_pass is not None and pipeline_pass < 0:
            raise ConfigError(f"pipeline_pass: must be non-negative, not "
                              f"{pipeline_pass}")

        self.matrix = matrix
        self.width = matrix.width
        self.use_4_2 = use_4_2
        self.pipeline_pass = pipeline_pass
        self.domain = domain
        self.record = record

        self._seq = 0
        self._adders = []
        self._registers = []
        self.registered = False
        self.history = []
        self.passes = 0

        self.columns = [[] for _ in range(self.width)]
        for row in matrix.rows:
            for i, term in enumerate(row.terms):
                self._push(term.value, row.shift + i)
        self._snapshot(None)

        self._compress()

        self.add0 = Signal(self.width, name="add0")
        self.add1 = Signal(self.width, name="add1")

    @property
    def stages(self):
        return 2 if self.registered else 1

    def _push(self, value, column, **kwargs):
        if column >= self.width:
            return None
        term = CompressTerm(value, column, self._seq, **kwargs)
        self._seq += 1
        self.columns[column].append(term)
        return term

    def _snapshot(self, adder):
        if self.record:
            self.history.append(CompressionStep(
                len(self.history), self.passes, adder,
                tuple(tuple(column) for column in self.columns)))

    def _add(self, kind, column, inputs, level, cin=None):
        adder = kind()
        name = f"{kind.__name__.lower()}_c{column}_{len(self._adders)}"
        self._adders.append((name, adder, [t.value for t in inputs], cin))

        latest = max(t.delay for t in inputs)
        for t in inputs:
            self.columns[column].remove(t)
        if cin is not None:
            self.columns[column].remove(cin)

        if kind is Compressor42:
            first = max(t.delay for t in inputs[:3])
            partial = first + SUM_DELAY
            late = max(partial, inputs[3].delay, cin.delay)
            self._push(adder.sum, column, delay=late + SUM_DELAY,
                       level=level)
            self._push(adder.carry, column + 1, delay=late + CARRY_DELAY,
                       level=level)
            self._push(adder.cout, column + 1, delay=first + CARRY_DELAY,
                       level=level, chained=True)
        else:
            self._push(adder.sum, column, delay=latest + SUM_DELAY,
                       level=level)
            self._push(adder.carry, column + 1, delay=latest + CARRY_DELAY,
                       level=level)

        self._snapshot(name)

    def _pass(self, index):
        level = index + 1
        for c, column in enumerate(self.columns):
            candidates = sorted((t for t in column if t.level <= index),
                                key=CompressTerm.order)
            chained = [t for t in column if t.chained]

            while len(column) > 2:
                if self.use_4_2 and len(candidates) >= 4 and \
                        (chained or len(candidates) >= 5):
                    inputs = candidates[:4]
                    cin = chained.pop(0) if chained else candidates[4]
                    del candidates[:5 if cin in candidates else 4]
                    self._add(Compressor42, c, inputs, level, cin)
                elif len(candidates) >= 3:
                    inputs = candidates[:3]
                    del candidates[:3]
                    self._add(FullAdder, c, inputs, level)
                elif len(candidates) == 2:
                    inputs = candidates[:2]
                    del candidates[:2]
                    self._add(HalfAdder, c, inputs, level)
                else:
                    break

            for t in chained:
                t.chained = False

    def _register(self):
        for c, column in enumerate(self.columns):
            for i, term in enumerate(column):
                reg = Signal(name=f"stage1_c{c}_{i}")
                self._registers.append(reg.eq(term.value))
                column[i] = CompressTerm(reg, c, self._seq, level=term.level,
                                         stage=1)
                self._seq += 1
        self.registered = True

    def _compress(self):
        limit = sum(len(column) for column in self.columns) + self.width
        while max((len(column) for column in self.columns), default=0) > 2:
            if self.passes >= limit:
                raise RuntimeError(f"compression did not converge after "
                                   f"{self.passes} passes")
            self._pass(self.passes)
            if self.passes == self.pipeline_pass:
                self._register()
            self.passes += 1

        if self.pipeline_pass is not None and not self.registered:
            self._register()

        logger.debug("compressed %d columns in %d passes with %d adders",
                     self.width, self.passes, len(self._adders))

    @property
    def adders(self):
        """Names of the adders, in creation order."""
        return [name for name, _, _, _ in self._adders]

    def output_terms(self, row):
        """Bits of output row ``row`` (0 or 1); ``None`` for empty slots."""
        return [column[row] if len(column) > row else None
                for column in self.columns]

    def elaborate(self, platform):
        m = Module()

        for name, adder, inputs, cin in self._adders:
            m.submodules[name] = adder
            m.d.comb += adder.inp.eq(Cat(*inputs))
            if cin is not None:
                m.d.comb += adder.cin.eq(cin.value)

        if self._registers:
            m.d[self.domain] += self._registers

        for out, row in ((self.add0, 0), (self.add1, 1)):
            m.d.comb += out.eq(Cat(*(C(0, 1) if t is None else t.value
                                     for t in self.output_terms(row))))

        return m
