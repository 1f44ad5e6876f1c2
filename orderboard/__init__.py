"""Live production order board for a print shop, backed by Firebase."""

__version__ = "0.1.0"
