"""Ledger stores for audit records."""

from datalens.audit.store import LedgerStore
from datalens.audit.stores.inmemory import InMemoryLedgerStore
from datalens.audit.stores.postgres import PostgresLedgerStore

__all__ = [
    "InMemoryLedgerStore",
    "LedgerStore",
    "PostgresLedgerStore",
]
