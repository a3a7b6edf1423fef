"""Booth multiplier and multiply-accumulate compression trees."""

from amaranth import Module, Signal
from amaranth.lib.wiring import In, Out, Component

from .compressor import ColumnCompressor
from .errors import ConfigError
from .partial_product import PartialProductGenerator, addend_row
from .sign_extension import SignExtension
from .signedness import Sign, Signedness


class _Operands:
    """Internal operand signals, and the ports that drive them."""

    def __init__(self):
        self.ports = {}
        self.wires = []

    def add(self, name, width, sign):
        value = Signal(width, name=name)
        self.ports[name] = In(width)
        self.wires.append((value, name))

        if sign is Sign.RUNTIME:
            select = Signal(name=f"{name}_signed")
            self.ports[f"{name}_signed"] = In(1)
            self.wires.append((select, f"{name}_signed"))
            return value, Signedness(select=select)
        return value, Signedness(sign is Sign.SIGNED)


class CompressionTreeMultiplier(Component):  # noqa: DOC602,DOC603
    r"""Booth-encoded multiplier reduced to two rows.

    The product :math:`a \times b` is formed as a radix-:math:`r` Booth
    partial-product matrix, sign extended by the chosen policy and reduced
    by a carry-save compression tree. The two output rows are left for an
    external final adder: ``add0 + add1`` modulo :math:`2^{width}` is the
    product, two's complement if either operand is signed.

    * Latency: combinational, or one clock cycle in ``domain`` if
      ``pipeline_pass`` is set.
    * Throughput: one multiply per clock cycle.

    Parameters
    ----------
    multiplicand_width : int
        Width of ``a``.
    multiplier_width : int, optional
        Width of ``b``; defaults to ``multiplicand_width``.
    radix : int
        Booth radix.
    multiplicand_sign : Sign
        Interpretation of ``a``.
    multiplier_sign : Sign
        Interpretation of ``b``.
    sign_extension : SignExtension
        Sign-extension policy.
    use_4_2 : bool
        Use 4:2 compressors.
    pipeline_pass : int, optional
        Compression pass after which to place a register.
    domain : str
        Clock domain of the register.
    record : bool
        Keep the compressor's step-by-step history.

    Attributes
    ----------
    a : In(multiplicand_width)
        The multiplicand.
    b : In(multiplier_width)
        The multiplier.
    a_signed : In(1)
        Only present for ``Sign.RUNTIME``; treat ``a`` as signed when
        asserted.
    b_signed : In(1)
        Only present for ``Sign.RUNTIME``; treat ``b`` as signed when
        asserted.
    add0, add1 : Out(width)
        Output rows.
    width : int
        Width of the output rows.
    generator : PartialProductGenerator
    compressor : ColumnCompressor
    """

    def __init__(self, multiplicand_width=8, multiplier_width=None, radix=4,
                 *, multiplicand_sign=Sign.UNSIGNED,
                 multiplier_sign=Sign.UNSIGNED,
                 sign_extension=SignExtension.COMPACT_RECT, use_4_2=False,
                 pipeline_pass=None, domain="sync", record=False):
        if multiplier_width is None:
            multiplier_width = multiplicand_width

        self._operands = _Operands()
        a, a_sign = self._operands.add("a", multiplicand_width,
                                       multiplicand_sign)
        b, b_sign = self._operands.add("b", multiplier_width, multiplier_sign)

        self.generator = PartialProductGenerator(
            a, b, radix, signed_multiplicand=a_sign, signed_multiplier=b_sign,
            sign_extension=sign_extension)
        self._extend_matrix()
        self.compressor = ColumnCompressor(
            self.generator.matrix, use_4_2=use_4_2,
            pipeline_pass=pipeline_pass, domain=domain, record=record)
        self.width = self.compressor.width

        super().__init__({
            **self._operands.ports,
            "add0": Out(self.width),
            "add1": Out(self.width)
        })

    def _extend_matrix(self):
        pass

    @property
    def matrix(self):
        return self.generator.matrix

    def elaborate(self, platform):  # noqa: D102
        m = Module()
        m.submodules.generator = self.generator
        m.submodules.compressor = self.compressor

        for wire, port in self._operands.wires:
            m.d.comb += wire.eq(getattr(self, port))

        m.d.comb += [
            self.add0.eq(self.compressor.add0),
            self.add1.eq(self.compressor.add1)
        ]

        return m


class CompressionTreeMultiplyAccumulate(CompressionTreeMultiplier):  # noqa: DOC602,DOC603,E501
    r"""Booth multiplier that also adds an addend.

    ``add0 + add1`` modulo :math:`2^{width}` is :math:`a \times b + c`. The
    addend enters the matrix as one more row ahead of the partial products,
    so it costs no more than a partial product in the compression tree.

    Parameters
    ----------
    multiplicand_width : int
        Width of ``a``.
    multiplier_width : int, optional
        Width of ``b``; defaults to ``multiplicand_width``.
    addend_width : int, optional
        Width of ``c``; defaults to the sum of the operand widths.
    radix : int
        Booth radix.
    multiplicand_sign, multiplier_sign, addend_sign : Sign
        Interpretation of ``a``, ``b`` and ``c``.
    sign_extension : SignExtension
        Sign-extension policy; any except ``BRUTE``.
    use_4_2 : bool
        Use 4:2 compressors.
    pipeline_pass : int, optional
        Compression pass after which to place a register.
    domain : str
        Clock domain of the register.

    Attributes
    ----------
    c : In(addend_width)
        The addend.
    c_signed : In(1)
        Only present for ``Sign.RUNTIME``.

    Raises
    ------
    ConfigError
        With ``SignExtension.BRUTE``, whose matrix has no fixed bias to
        cancel, or if ``c`` is too wide for the product.
    """

    def __init__(self, multiplicand_width=8, multiplier_width=None,
                 addend_width=None, radix=4, *, addend_sign=Sign.UNSIGNED,
                 **kwargs):
        if multiplier_width is None:
            multiplier_width = multiplicand_width
        if addend_width is None:
            addend_width = multiplicand_width + multiplier_width
        self._addend = (addend_width, addend_sign)
        super().__init__(multiplicand_width, multiplier_width, radix,
                         **kwargs)

    def _extend_matrix(self):
        matrix = self.generator.matrix
        if matrix.bias is None:
            raise ConfigError(
                f"sign_extension: multiply-accumulate needs a policy with a "
                f"fixed bias, not {self.generator.sign_extension}")

        c, c_sign = self._operands.add("c", *self._addend)
        matrix.prepend_addend(addend_row(c, c_sign, matrix.bias))
        matrix.signedness.append(c_sign)
