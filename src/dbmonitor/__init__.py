"""PostgreSQL fleet observation pipeline."""

__version__ = "0.1.0"
