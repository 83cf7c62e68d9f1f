"""raiseledger — commitment and pro-rata token distribution ledger."""

__version__ = "0.1.0"
