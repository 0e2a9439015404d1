"""Network debugging assistant: TCP and UDP servers with a small JSON web API."""

__version__ = "0.1.0"