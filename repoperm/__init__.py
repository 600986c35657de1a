"""repoperm: repository permission resolution for code-host authorization."""

__version__ = "0.1.0"
