"""Booth partial-product matrices."""

import enum
import logging
from typing import NamedTuple

from amaranth import C, Cat, Elaboratable, Module, Signal

from .encoder import MultiplierEncoder, RadixEncoder
from .errors import ConfigError
from .signedness import Signedness


logger = logging.getLogger(__name__)


class TermKind(enum.Enum):
    """Role of a matrix bit; only affects rendering."""

    DATA = enum.auto()
    SIGN = enum.auto()
    INVERTED_SIGN = enum.auto()
    CORRECTION = enum.auto()


class Term(NamedTuple):
    """One weighted bit of a partial-product row."""

    value: object
    kind: TermKind = TermKind.DATA


ZERO = Term(C(0, 1))
ONE = Term(C(1, 1))


def sign_term(value):
    return Term(value, TermKind.SIGN)


def inverted_sign_term(value):
    return Term(value, TermKind.INVERTED_SIGN)


def correction_term(value):
    return Term(value, TermKind.CORRECTION)


class PartialProductRow:  # noqa: DOC602,DOC603
    """A row of the matrix: bits starting at column :attr:`shift`.

    Attributes
    ----------
    terms : list of Term
        Bits, LSB first.
    shift : int
        Column of ``terms[0]``.
    digit : BoothDigit or None
        Booth digit that selected the row. ``None`` for correction and
        addend rows.
    """

    def __init__(self, terms, shift, digit=None):
        self.terms = list(terms)
        self.shift = shift
        self.digit = digit

    @property
    def extent(self):
        """Column just above the row's top bit."""
        return self.shift + len(self.terms)

    def __len__(self):
        return len(self.terms)

    def __repr__(self):
        return f"PartialProductRow(len={len(self.terms)}, shift={self.shift})"


class PartialProductMatrix:  # noqa: DOC602,DOC603
    """Rows of weighted bits whose sum is the product.

    Attributes
    ----------
    rows : list of PartialProductRow
        Rows in placement order.
    signedness : list of Signedness
        Interpretations of the operands; the sum is read as two's
        complement when any of them is signed.
    sign_extended : bool
        Whether a sign-extension policy has been applied.
    bias : int or None
        Set by sign extension: the rows sum to exactly
        ``product + 2**bias``. ``None`` when the policy gives no such
        guarantee.
    """

    def __init__(self, rows, signedness):
        self.rows = rows
        self.signedness = list(signedness)
        self.sign_extended = False
        self.bias = None

    @property
    def width(self):
        """Number of columns spanned by the rows."""
        return max(row.extent for row in self.rows)

    def shape(self):
        """Structural fingerprint: ``(len, shift)`` of each row."""
        return tuple((len(row), row.shift) for row in self.rows)

    def prepend_addend(self, row):
        """Insert an addend row ahead of the partial products."""
        self.rows.insert(0, row)


def addend_row(addend, signed, bias):
    """Build the row that folds ``addend`` into a sign-extended matrix.

    The addend is extended to ``bias`` bits per ``signed``, followed by the
    inverted sign and a one. Its value is ``addend + 3 * 2**bias``, which
    with the matrix's own ``2**bias`` makes the total congruent to
    ``product + addend`` modulo ``2**(bias + 2)``.

    Parameters
    ----------
    addend : Value
        Addend bits.
    signed : Signedness
        Interpretation of ``addend``.
    bias : int
        :attr:`PartialProductMatrix.bias` of the target matrix.

    Returns
    -------
    PartialProductRow

    Raises
    ------
    ConfigError
        If the addend does not fit below ``bias``.
    """
    if len(addend) > bias:
        raise ConfigError(f"addend: width {len(addend)} exceeds the "
                          f"{bias}-bit product field")

    sign = signed.select(addend[-1], C(0, 1))
    terms = [Term(addend[i]) for i in range(len(addend))]
    terms += [sign_term(sign)] * (bias - len(addend))
    terms += [inverted_sign_term(~sign), ONE]
    return PartialProductRow(terms, 0)


class MultiplicandSelector(Elaboratable):  # noqa: DOC602,DOC603
    r"""Precomputed multiples of the multiplicand.

    The multiplicand is extended by :math:`k` bits and multiplied by every
    Booth magnitude :math:`1 \ldots r/2` using shifts and one add or
    subtract of an already-built smaller multiple. A row bit is the OR of
    the multiples a digit selects, inverted when the digit is negative.

    Parameters
    ----------
    multiplicand : Value
        Multiplicand bits.
    encoder : RadixEncoder
        Encoder whose digits select from this selector.
    signed : Signedness
        Interpretation of ``multiplicand``.

    Attributes
    ----------
    width : int
        Width of a selected row, :math:`w_a + k - 1`.
    multiples : list of Signal
        ``multiples[m - 1]`` holds :math:`m \times a` modulo
        :math:`2^{w_a+k}`.

    Raises
    ------
    ConfigError
        If the multiplicand is narrower than :math:`k`.
    """

    def __init__(self, multiplicand, encoder, signed):
        k = encoder.shift
        if len(multiplicand) < k:
            raise ConfigError(f"multiplicand: width {len(multiplicand)} is "
                              f"below the minimum of {k} for radix "
                              f"{encoder.radix}")

        self.encoder = encoder
        self.signed = signed
        self.width = len(multiplicand) + k - 1

        full = len(multiplicand) + k
        extended = Signal(full, name="multiplicand_ext")
        self._stmts = [extended.eq(signed.extend(multiplicand, full))]

        self.multiples = []
        for m in range(1, encoder.num_multiples + 1):
            sig = Signal(full, name=f"multiple{m}")
            self._stmts.append(sig.eq(self._shift_add(extended, m)))
            self.multiples.append(sig)

    def _shift_add(self, extended, m):
        if m == 1:
            return extended
        if m % 2 == 0:
            return self.multiples[m // 2 - 1] << 1

        upper = 1 << m.bit_length()
        lower = upper >> 1
        if upper - m < m - lower:
            return (extended << m.bit_length()) - self.multiples[upper - m - 1]
        return (extended << (m.bit_length() - 1)) + \
            self.multiples[m - lower - 1]

    def select(self, column, digit):
        """Row bit at ``column`` for ``digit``."""
        column_bits = Cat(*(multiple[column] for multiple in self.multiples))
        return (digit.multiples & column_bits).any() ^ digit.negate

    def elaborate(self, platform):
        m = Module()
        m.d.comb += self._stmts
        return m


class PartialProductGenerator(Elaboratable):  # noqa: DOC602,DOC603
    r"""Booth partial-product matrix for ``multiplicand * multiplier``.

    Row :math:`i` holds the multiple selected by digit :math:`i`, one's
    complemented when the digit is negative, placed at column
    :math:`i \cdot k`. The +1 that completes each two's complement negation
    and the sign extension of every row are both the business of the
    sign-extension policy, which is applied once, right away, unless
    ``sign_extension`` is ``None``.

    Parameters
    ----------
    multiplicand : Value
        Multiplicand bits.
    multiplier : Value
        Multiplier bits.
    radix : int
        Booth radix; power of two, at least 2.
    signed_multiplicand : bool or Value or Signedness
        Static flag or 1-bit runtime select.
    signed_multiplier : bool or Value or Signedness
        Static flag or 1-bit runtime select.
    sign_extension : SignExtension or None
        Policy to apply.

    Attributes
    ----------
    encoder : RadixEncoder
    multiplier_encoder : MultiplierEncoder
    selector : MultiplicandSelector
    matrix : PartialProductMatrix
    rows : int
        Number of Booth digits.
    row_width : int
        Width of a row before sign extension, :math:`w_a + k - 1`.

    Raises
    ------
    ConfigError
        On an illegal radix, operand widths too narrow for the radix,
        malformed signedness, or a policy that cannot handle the operand
        widths.
    """

    def __init__(self, multiplicand, multiplier, radix=4, *,
                 signed_multiplicand=False, signed_multiplier=False,
                 sign_extension=None):
        self.encoder = RadixEncoder(radix)
        self.signed_multiplicand = Signedness.cast(
            signed_multiplicand, name="signed_multiplicand")
        self.signed_multiplier = Signedness.cast(
            signed_multiplier, name="signed_multiplier")
        self.multiplicand = multiplicand
        self.multiplier = multiplier

        self.selector = MultiplicandSelector(multiplicand, self.encoder,
                                             self.signed_multiplicand)
        self.multiplier_encoder = MultiplierEncoder(multiplier, self.encoder,
                                                    self.signed_multiplier)
        self.rows = self.multiplier_encoder.rows
        self.row_width = self.selector.width

        rows = []
        for digit in self.multiplier_encoder.digits:
            terms = [Term(self.selector.select(c, digit))
                     for c in range(self.row_width)]
            rows.append(PartialProductRow(terms, digit.offset, digit))
        self.matrix = PartialProductMatrix(
            rows, [self.signed_multiplicand, self.signed_multiplier])

        logger.debug("radix %d, %dx%d: %d rows of %d bits", radix,
                     len(multiplicand), len(multiplier), self.rows,
                     self.row_width)

        self.sign_extension = None
        if sign_extension is not None:
            self.extend(sign_extension)

    @property
    def digits(self):
        return self.multiplier_encoder.digits

    def extend(self, sign_extension):
        """Apply a sign-extension policy to :attr:`matrix`.

        Parameters
        ----------
        sign_extension : SignExtension
            Policy to apply.

        Raises
        ------
        ConfigError
            If the matrix is already sign extended, or the policy cannot
            handle the operand widths.
        """
        if self.matrix.sign_extended:
            raise ConfigError("sign_extension: matrix is already sign "
                              "extended")

        sign_extension.policy(self).extend()
        self.sign_extension = sign_extension
        self.matrix.sign_extended = True

        logger.debug("%s: %d rows, %d columns, bias %s", sign_extension.name,
                     len(self.matrix.rows), self.matrix.width,
                     self.matrix.bias)

    def elaborate(self, platform):
        m = Module()
        m.submodules.selector = self.selector
        m.submodules.multiplier_encoder = self.multiplier_encoder
        return m
