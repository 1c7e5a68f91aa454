"""FX request-for-quote desk with ledger-escrowed settlement."""

__version__ = "0.1.0"
