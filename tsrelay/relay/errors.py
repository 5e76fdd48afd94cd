"""Excepciones propias del relay."""


class RelayStartupError(RuntimeError):
    """The relay cannot start: listener bind failed or storage is unreachable."""
