"""aisessions: browse and search AI coding sessions from eight tools."""

__version__ = "0.1.0"
