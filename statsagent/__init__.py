"""Statistics collection logic for a database monitoring agent: /proc parsers, disk I/O tracking, activity sampling and settings."""

__version__ = "0.1.0"