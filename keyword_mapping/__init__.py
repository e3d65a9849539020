"""Keyword mapping -- keyword research aggregation, volume enrichment and semantic clustering."""

__version__ = "1.0.0"
