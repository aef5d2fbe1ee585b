"""Event-driven storage, caching and publication of form answers."""

__version__ = "0.1.0"