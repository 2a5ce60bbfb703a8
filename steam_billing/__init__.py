"""Steam in-app purchase orchestration and billing report reconciliation."""

__version__ = "0.1.0"
