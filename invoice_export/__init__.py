"""Invoice export and reporting pipeline."""

__version__ = "0.1.0"
