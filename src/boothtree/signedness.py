"""Static and runtime-selectable operand signedness."""

from amaranth import Cat, Const, Mux, Value
from amaranth.lib.enum import Enum, auto

from .errors import ConfigError


class Sign(Enum):  # noqa: DOC602,DOC603
    """How a component interprets one of its operands.

    Attributes
    ----------
    UNSIGNED
        The operand is always unsigned.
    SIGNED
        The operand is always two's complement.
    RUNTIME
        The component grows a 1-bit input port; when that port is asserted
        the operand is treated as two's complement, otherwise as unsigned.
    """

    UNSIGNED = auto()
    SIGNED = auto()
    RUNTIME = auto()


class Signedness:  # noqa: DOC602,DOC603
    """Signedness of an operand, fixed at construction or chosen at runtime.

    Generators never branch their structure on a runtime select. Anything
    that depends on the interpretation of an operand goes through
    :meth:`select`, which is a plain choice for static signedness and a
    :class:`~amaranth:amaranth.hdl.Mux` for dynamic signedness. The shape of
    the emitted structure is thus identical for both values of the select.

    Parameters
    ----------
    signed : bool
        Static interpretation. Ignored when ``select`` is given.
    select : Value, optional
        1-bit runtime select; asserted means signed.

    Attributes
    ----------
    select_signal : Value or None
        The runtime select, if any.
    """

    def __init__(self, signed=False, select=None):
        self.select_signal = select
        self._signed = bool(signed) if select is None else None

    @staticmethod
    def cast(obj, *, name="signed"):
        """Normalize ``obj`` into a :class:`Signedness`.

        Parameters
        ----------
        obj : bool or Value or Signedness
            A static flag, a 1-bit runtime select, or an existing
            :class:`Signedness`.
        name : str
            Parameter name used in error messages.

        Returns
        -------
        Signedness

        Raises
        ------
        ConfigError
            If ``obj`` is none of the accepted kinds, or is a value wider
            than one bit.
        """
        if isinstance(obj, Signedness):
            return obj
        if isinstance(obj, bool):
            return Signedness(obj)
        if isinstance(obj, Value):
            if len(obj) != 1:
                raise ConfigError(f"{name}: runtime select must be 1 bit "
                                  f"wide, not {len(obj)}")
            return Signedness(select=obj)
        raise ConfigError(f"{name}: expected bool or 1-bit Value, not "
                          f"{obj!r}")

    @property
    def is_dynamic(self):
        return self.select_signal is not None

    @property
    def is_static_signed(self):
        return self._signed is True

    @property
    def is_static_unsigned(self):
        return self._signed is False

    def select(self, if_signed, if_unsigned):
        """Choose between two values according to the signedness."""
        if self.is_dynamic:
            return Mux(self.select_signal, if_signed, if_unsigned)
        return if_signed if self._signed else if_unsigned

    def sample(self, ctx):
        """Resolve to a ``bool`` inside a running simulation."""
        if self.is_dynamic:
            return bool(ctx.get(self.select_signal))
        return self._signed

    def extend(self, value, width):
        """Extend ``value`` to exactly ``width`` bits per the signedness."""
        pad = width - len(value)
        msb = self.select(value[-1], Const(0, 1))
        return Cat(value, msb.replicate(pad))

    def __repr__(self):
        if self.is_dynamic:
            return f"Signedness(select={self.select_signal!r})"
        return f"Signedness({self._signed})"
