"""Tool bridge between chat hosts and the POOM video walkthrough pipeline."""

__version__ = "0.1.0"
