"""datalens: tamper-evident audit ledger for the privacy-compliance platform."""

__version__ = "0.1.0"
