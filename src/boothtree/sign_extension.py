"""Sign-extension policies for Booth partial-product matrices.

Every row :math:`i` of a freshly generated matrix holds the bits of
:math:`d_i a`, one's complemented when :math:`d_i < 0`. Read as an infinitely
sign-extended number with its sign at column :math:`N` (relative to the
row), row :math:`i` is worth :math:`d_i a - \\mathit{neg}_i`. A policy makes
the finite matrix sum to the product by

* adding the missing :math:`\\mathit{neg}_i` back in as a correction bit,
  and
* replacing the infinite sign extension of each row with a handful of
  bits that sum to the same value modulo the product width.

:math:`N` is :math:`w_a + k - 2` for a statically signed multiplicand (the
top row bit doubles as the sign) and :math:`w_a + k - 1` otherwise (the sign
is an extra column, the negate flag for an unsigned multiplicand).

The policies differ in how many bits they add and in whether they work for
any pair of operand widths.
"""

import enum
import logging

from amaranth import C, Mux

from .errors import ConfigError
from .partial_product import (ONE, ZERO, PartialProductRow, correction_term,
                              inverted_sign_term, sign_term)


logger = logging.getLogger(__name__)


class _SignExtender:
    def __init__(self, generator):
        self.matrix = generator.matrix
        self.rows = generator.matrix.rows
        self.k = generator.encoder.shift
        self.n = generator.row_width
        self.signed_multiplicand = generator.signed_multiplicand
        self.signed_multiplier = generator.signed_multiplier
        self.multiplicand_width = len(generator.multiplicand)
        self.multiplier_width = len(generator.multiplier)
        self.negates = [digit.negate for digit in generator.digits]

        self.sign_pos = self.n - \
            (1 if self.signed_multiplicand.is_static_signed else 0)
        # Read before any policy touches the rows.
        self.row_signs = [
            self.signed_multiplicand.select(row.terms[-1].value,
                                            row.digit.negate)
            for row in self.rows
        ]

    def _add_stop_sign(self, terms, term):
        # A statically signed row already carries its sign in its top bit.
        if self.signed_multiplicand.is_static_signed:
            terms[-1] = term
        else:
            terms.append(term)

    def _add_stop_sign_flip(self, terms, negate):
        if self.signed_multiplicand.is_static_signed:
            terms[-1] = inverted_sign_term(~terms[-1].value)
        elif self.signed_multiplicand.is_static_unsigned:
            terms.append(inverted_sign_term(~negate))
        else:
            terms.append(inverted_sign_term(
                Mux(self.signed_multiplicand.select_signal,
                    ~terms[-1].value, ~negate)))

    def _inject_negate(self, row, index):
        # Completes the two's complement of row "index", which sits k
        # columns below "row".
        row.terms[0:0] = [correction_term(self.negates[index])] + \
            [ZERO] * (self.k - 1)
        row.shift -= self.k

    def extend(self):
        raise NotImplementedError


class BruteSignExtension(_SignExtender):
    """Sign-extend every row to the full product width."""

    def extend(self):
        k, rows = self.k, len(self.rows)

        for i, row in enumerate(self.rows):
            row.terms += [sign_term(self.row_signs[i])] * ((rows - i) * k)
            if i > 0:
                self._inject_negate(row, i - 1)

        self.rows.append(PartialProductRow(
            [correction_term(self.negates[-1])] + [ZERO] * self.n,
            (rows - 1) * k))
        # Correct only modulo the matrix width; no fixed offset.
        self.matrix.bias = None


class StopBitsSignExtension(_SignExtender):
    r"""Replace each row's sign extension with a stop bit.

    The first row keeps :math:`k` copies of its sign (fewer if the top bit
    is already the sign) followed by the inverted sign. Every later row
    gets its inverted sign and :math:`k-1` ones. The ones and inverted
    signs telescope: the matrix sums to :math:`P + 2^{N + Rk}`. The +1 of
    the last negative row either lands in an existing row's extension
    region (multiplier much wider than the multiplicand) or gets a row of
    its own.
    """

    def extend(self):
        k, n, rows = self.k, self.n, len(self.rows)
        static_signed = self.signed_multiplicand.is_static_signed
        bias = self.sign_pos + rows * k

        final_carry_pos = k * (rows - 1)
        relative = final_carry_pos - n - k
        final_carry_row = 0
        if self.multiplier_width > self.multiplicand_width and relative > 0:
            final_carry_row = relative // k

        for i, row in enumerate(self.rows):
            sign = self.row_signs[i]
            if i == 0:
                copies = k - 1 if static_signed else k
                row.terms += [sign_term(sign)] * copies
                row.terms.append(inverted_sign_term(~sign))
            else:
                self._add_stop_sign(row.terms, inverted_sign_term(~sign))
                row.terms += [ONE] * (k - 1)
                self._inject_negate(row, i - 1)

        if final_carry_row > 0:
            row = self.rows[final_carry_row]
            row.terms += [ZERO] * (final_carry_pos - row.extent)
            row.terms.append(correction_term(self.negates[-1]))
        elif not self.signed_multiplier.is_static_unsigned:
            # An unsigned multiplier's top digit is never negative.
            extra = PartialProductRow(
                [correction_term(self.negates[-1])] + [ZERO] * n,
                final_carry_pos)
            if k == 1:
                # Radix 2 leaves no room for the +1 the last stop bit
                # expects; give it one in the correction row.
                self._add_stop_sign_flip(extra.terms, C(0, 1))
                bias += 1
            self.rows.append(extra)

        self.matrix.bias = bias


class CompactSignExtension(_SignExtender):
    r"""Fold sign corrections into the rows that follow.

    Instead of a correction bit below every row, the +1 of row :math:`i` is
    pushed through the low :math:`k-1` bits of row :math:`i` itself (a
    small incrementer) and only its carry moves to the next row. The carry
    out of the last row is merged with the first row's sign into a short
    run of "Q" bits.

    Only valid for equal operand widths where the Q bits do not overlap the
    last row's carry.
    """

    def _check(self):
        if self.multiplicand_width != self.multiplier_width:
            raise ConfigError(
                f"sign_extension: COMPACT needs equal operand widths, not "
                f"{self.multiplicand_width} and {self.multiplier_width}; use "
                f"COMPACT_RECT")
        if self._align() < 0:
            raise ConfigError(
                "sign_extension: COMPACT cannot place its correction term "
                "for these operands; use COMPACT_RECT")

    def _align(self):
        # Distance between the first row's sign and the last row's shift.
        return self.sign_pos - (len(self.rows) - 1) * self.k

    def _fold(self, row, negate, length):
        carry = negate
        for c in range(length):
            bit = row.terms[c].value
            row.terms[c] = row.terms[c]._replace(value=bit ^ carry)
            carry = carry & bit
        return carry

    def _q_bits(self, first_sign, last_carry):
        k = self.k
        mixed = first_sign & ~last_carry
        return [sign_term(first_sign ^ last_carry)] + \
            [sign_term(mixed)] * (k - 1) + [inverted_sign_term(~mixed)]

    def _place_last_carry(self, last_carry, q):
        # The Q bits absorb the last carry when the widths are equal.
        pass

    def extend(self):
        self._check()

        k, rows = self.k, len(self.rows)
        align = self._align()
        first_sign = self.row_signs[0]

        carries = []
        for i, row in enumerate(self.rows):
            length = max(align, 0) if i == rows - 1 else k - 1
            carries.append(self._fold(row, self.negates[i], length))

        for i, row in enumerate(self.rows[1:], start=1):
            self._add_stop_sign_flip(row.terms, self.negates[i])
            row.terms.insert(0, correction_term(carries[i - 1]))
            row.terms += [ONE] * (k - 1)
            row.shift -= 1

        q = self._q_bits(first_sign, carries[-1])
        self._add_stop_sign(self.rows[0].terms, q[0])
        self.rows[0].terms += q[1:]
        self._place_last_carry(carries[-1], q)

        bias = self.sign_pos + rows * k
        if k == 1:
            self.rows[-1].terms.append(ONE)
            bias += 1
        self.matrix.bias = bias


class CompactRectSignExtension(CompactSignExtension):
    r"""Compact sign extension for any pair of operand widths.

    When the multiplier is wider than the multiplicand, the last row's carry
    moves down to (or below) the first row's sign column. Overlapping Q bits
    are merged with the carry; if the carry falls entirely below the Q
    bits, the Q bits keep only the first row's sign and the carry is placed
    on its own in the extension region of an earlier row.
    """

    def _check(self):
        # Any pair of widths can be laid out.
        pass

    def _q_bits(self, first_sign, last_carry):
        k = self.k
        length = k + 1
        align = self._align()
        insert = max(-align, 0)

        q = [sign_term(first_sign)] * min(length, insert)
        if insert < length:
            q.append(sign_term(first_sign ^ last_carry))
            if insert == length - 1:
                q[insert] = inverted_sign_term(~q[insert].value)
                q.append(inverted_sign_term(~(first_sign | q[insert].value)))
            else:
                mixed = first_sign & ~last_carry
                q += [sign_term(mixed)] * (length - insert - 2)
                q.append(inverted_sign_term(~mixed))

        if -align >= len(q):
            q[-1] = inverted_sign_term(~first_sign)
        return q

    def _place_last_carry(self, last_carry, q):
        k, rows = self.k, len(self.rows)
        align = self._align()
        if -align < len(q):
            return

        target = (-align - k) // k
        row = self.rows[target]
        row.terms += [ZERO] * ((rows - 1) * k - row.extent)
        row.terms.append(correction_term(last_carry))
        logger.debug("compact-rect: last carry placed in row %d", target)


class SignExtension(enum.Enum):  # noqa: DOC602,DOC603
    """Available sign-extension policies.

    Attributes
    ----------
    BRUTE
        Every row extended to the full width. Largest, always correct
        modulo the matrix width.
    STOP_BITS
        One stop bit per row plus a correction row. Any operand widths.
    COMPACT
        Corrections folded into the following rows; equal operand widths
        only.
    COMPACT_RECT
        :attr:`COMPACT` generalized to any operand widths.
    """

    BRUTE = "brute"
    STOP_BITS = "stop_bits"
    COMPACT = "compact"
    COMPACT_RECT = "compact_rect"

    @property
    def policy(self):
        return {
            SignExtension.BRUTE: BruteSignExtension,
            SignExtension.STOP_BITS: StopBitsSignExtension,
            SignExtension.COMPACT: CompactSignExtension,
            SignExtension.COMPACT_RECT: CompactRectSignExtension,
        }[self]
