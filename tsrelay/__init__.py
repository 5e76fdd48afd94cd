"""Relay Netdata JSON backend streams into PostgreSQL."""

__version__ = "0.2.0"

__all__ = [
    "__version__",
]
