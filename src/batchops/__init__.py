"""batchops: batch operation engine for catalog/identity records."""

__version__ = "0.1.0"
