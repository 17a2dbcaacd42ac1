"""Video ingestion, publishing and catalog reconciliation pipeline."""

__version__ = "0.1.0"
