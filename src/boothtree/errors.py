"""Exceptions raised while building multiplier structures."""


class ConfigError(ValueError):
    """A generator was given parameters it cannot build a structure for.

    The message names the offending parameter. Raised from constructors,
    before any structure is emitted.
    """

    pass
