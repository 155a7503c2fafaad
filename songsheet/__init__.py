"""Song spreadsheet ingestion, consolidation and batch enrichment."""

__version__ = "0.3.0"
