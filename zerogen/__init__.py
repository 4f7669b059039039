"""Generate Zero client schema and mutation modules from a live database."""

__version__ = "0.4.0"
