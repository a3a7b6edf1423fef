"""Radix-r Booth encoding of a multiplier."""

from typing import NamedTuple

from amaranth import C, Cat, Elaboratable, Module, Signal

from .errors import ConfigError
from .signedness import Signedness


class Zero(NamedTuple):
    """Booth digit 0; selects an all-zero row."""

    @property
    def value(self):
        return 0


class PositiveMultiple(NamedTuple):
    """Booth digit ``+multiple``."""

    multiple: int

    @property
    def value(self):
        return self.multiple


class NegativeMultiple(NamedTuple):
    """Booth digit ``-multiple``."""

    multiple: int

    @property
    def value(self):
        return -self.multiple


def radix_shift(radix):
    """Return :math:`\\log_2(r)`, checking that ``radix`` is usable.

    Raises
    ------
    ConfigError
        If ``radix`` is not a power of two of at least 2.
    """
    if not isinstance(radix, int) or radix < 2 or radix & (radix - 1):
        raise ConfigError(f"radix: must be a power of two >= 2, not "
                          f"{radix!r}")
    return radix.bit_length() - 1


class RadixEncoder:  # noqa: DOC602,DOC603
    r"""Booth encoder for a single :math:`(k+1)`-bit window.

    A window :math:`w_k \ldots w_1 w_0` overlaps the previous window by one
    bit (:math:`w_0` is the top bit of the previous group) and encodes the
    digit

    .. math::

        d = -2^{k-1} w_k + \sum_{j=1}^{k-1} 2^{j-1} w_j + w_0

    which lies in :math:`[-r/2, r/2]`. In hardware the digit is split into a
    one-hot magnitude (one bit per multiple :math:`1 \ldots r/2`) and a
    negate flag. The magnitude bits come from matching the Gray code of
    the window rather than from a table, so every power-of-two radix is
    handled by the same code.

    Parameters
    ----------
    radix : int
        Power of two, at least 2.

    Attributes
    ----------
    radix : int
        Radix of the encoding.
    shift : int
        :math:`k = \log_2(r)`; the column distance between adjacent digits.
    num_multiples : int
        Number of distinct nonzero magnitudes, :math:`r/2`.
    """

    def __init__(self, radix=4):
        self.shift = radix_shift(radix)
        self.radix = radix
        self.num_multiples = radix // 2

    def encode(self, window):
        """Encode a :math:`(k+1)`-bit window.

        Parameters
        ----------
        window : Value
            Window bits, LSB being the overlap bit.

        Returns
        -------
        (Value, Value)
            One-hot magnitude (bit ``m-1`` selects multiple ``m``) and the
            negate flag.
        """
        k = self.shift
        # Adjacent Booth magnitudes 2m-1 and 2m sit next to each other in
        # the window's Gray code and differ in exactly one Gray bit; the
        # remaining k-1 (or k, at the top) bits identify the pair.
        gray = window[:k] ^ window[1:k + 1]

        selects = []
        for m in range(1, self.num_multiples + 1):
            odd = (2*m - 1) ^ ((2*m - 1) >> 1)
            even = (2*m) ^ ((2*m) >> 1)
            literals = []
            for j in range(k):
                if (odd ^ even) >> j & 1:
                    continue
                literals.append(gray[j] if odd >> j & 1 else ~gray[j])
            selects.append(Cat(*literals).all() if literals else C(1, 1))

        multiples = Cat(*selects)
        negate = multiples.any() & window[k]
        return multiples, negate

    def decode(self, window):
        """Compute the digit a concrete window value encodes.

        Parameters
        ----------
        window : int
            Window value, LSB being the overlap bit.

        Returns
        -------
        Zero or PositiveMultiple or NegativeMultiple
        """
        k = self.shift
        digit = (window & 1) + ((window >> 1) & ((1 << (k - 1)) - 1)) - \
            ((window >> k) & 1) * (1 << (k - 1))
        if digit == 0:
            return Zero()
        elif digit > 0:
            return PositiveMultiple(digit)
        else:
            return NegativeMultiple(-digit)


def num_digits(width, radix, signed=False):
    """Number of Booth digits needed for a ``width``-bit multiplier.

    An unsigned (or runtime-signed) multiplier needs room for a zero above
    its MSB so its top digit never reads as negative.
    """
    k = radix_shift(radix)
    bits = width if signed else width + 1
    return -(-bits // k)


def booth_digits(value, width, radix, signed=False):
    """Booth-encode a concrete multiplier.

    Parameters
    ----------
    value : int
        Multiplier; negative values are allowed when ``signed``.
    width : int
        Width of the multiplier in bits.
    radix : int
        Radix of the encoding.
    signed : bool
        Interpretation of ``value``.

    Returns
    -------
    list of Zero or PositiveMultiple or NegativeMultiple
        Digits, least significant first, with
        :math:`\\sum d_i r^i` equal to ``value``.
    """
    encoder = RadixEncoder(radix)
    k = encoder.shift
    rows = num_digits(width, radix, signed)
    bits = value & ((1 << width) - 1)
    if signed and value < 0:
        bits |= ((1 << (rows*k - width)) - 1) << width

    padded = bits << 1
    return [encoder.decode((padded >> (i*k)) & ((1 << (k + 1)) - 1))
            for i in range(rows)]


class BoothDigit:  # noqa: DOC602,DOC603
    """Hardware encoding of one multiplier group.

    Attributes
    ----------
    index : int
        Position of the group, least significant first.
    offset : int
        Column of the digit's weight, ``index * k``.
    multiples : Signal
        One-hot magnitude; all zero for digit 0.
    negate : Signal
        Set when the digit is negative.
    """

    def __init__(self, index, offset, multiples, negate):
        self.index = index
        self.offset = offset
        self.multiples = multiples
        self.negate = negate

    def __repr__(self):
        return f"BoothDigit({self.index}, offset={self.offset})"


class MultiplierEncoder(Elaboratable):  # noqa: DOC602,DOC603
    """Encode every group of a multiplier.

    The multiplier is extended to ``rows * k`` bits (sign, zero or
    runtime-selected extension), then sliced into overlapping windows which
    each go through :meth:`RadixEncoder.encode`.

    Parameters
    ----------
    multiplier : Value
        Multiplier bits.
    encoder : RadixEncoder
        Window encoder.
    signed : Signedness
        Interpretation of ``multiplier``.

    Attributes
    ----------
    rows : int
        Number of Booth digits.
    digits : list of BoothDigit
        One digit per row, least significant first.

    Raises
    ------
    ConfigError
        If the multiplier is too narrow to form a full window.
    """

    def __init__(self, multiplier, encoder, signed):
        k = encoder.shift
        minimum = k + (1 if signed.is_static_signed else 0)
        if len(multiplier) < minimum:
            raise ConfigError(f"multiplier: width {len(multiplier)} is below "
                              f"the minimum of {minimum} for radix "
                              f"{encoder.radix}")

        self.encoder = encoder
        self.signed = signed
        self.multiplier = multiplier
        self.rows = num_digits(len(multiplier), encoder.radix,
                               signed.is_static_signed)

        self.extended = Signal(self.rows * k, name="multiplier_ext")
        self.digits = []
        self._stmts = [
            self.extended.eq(signed.extend(multiplier, self.rows * k))
        ]

        for i in range(self.rows):
            below = C(0, 1) if i == 0 else self.extended[i*k - 1]
            window = Cat(below, self.extended[i*k:(i + 1)*k])
            multiples, negate = encoder.encode(window)

            digit = BoothDigit(
                i, i*k,
                Signal(encoder.num_multiples, name=f"digit{i}_multiples"),
                Signal(name=f"digit{i}_negate"))
            self._stmts += [
                digit.multiples.eq(multiples),
                digit.negate.eq(negate)
            ]
            self.digits.append(digit)

    def elaborate(self, platform):
        m = Module()
        m.d.comb += self._stmts
        return m
