"""Paper-trading ledger for Base network tokens."""

__version__ = "0.3.0"
