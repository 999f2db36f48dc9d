"""Wire the audit ledger from configuration.

Example usage:

    from datalens.audit.bootstrap import start_audit_ledger

    ledger = await start_audit_ledger(bus)
    ...
    await ledger.close()
"""

from dataclasses import dataclass

from datalens.audit.store import LedgerStore
from datalens.audit.stores.inmemory import InMemoryLedgerStore
from datalens.audit.stores.postgres import PostgresLedgerStore
from datalens.audit.subscriber import AuditSubscriber
from datalens.config import get_settings
from datalens.config.settings import Settings
from datalens.db.pool import PostgresPool
from datalens.eventbus.bus import EventBus
from datalens.observability.logging import get_logger
from datalens.observability.metrics import start_metrics_server

logger = get_logger(__name__)


@dataclass
class AuditLedger:
    """Running audit ledger and the resources it owns."""

    store: LedgerStore
    subscriber: AuditSubscriber
    pool: PostgresPool | None = None

    async def close(self) -> None:
        """Stop consuming events, then release the database pool."""
        await self.subscriber.stop()
        if self.pool is not None:
            await self.pool.close()


async def create_ledger_store(settings: Settings) -> tuple[LedgerStore, PostgresPool | None]:
    """Create the ledger store selected by ``storage.ledger.backend``."""
    config = settings.storage.ledger
    if config.backend == "postgres":
        pool = PostgresPool.from_config(config)
        await pool.connect()
        logger.info("ledger_store_created", backend="postgres")
        return PostgresLedgerStore(pool), pool

    logger.warning("ledger_store_created", backend="inmemory", durable=False)
    return InMemoryLedgerStore(), None


async def start_audit_ledger(bus: EventBus, settings: Settings | None = None) -> AuditLedger:
    """Create the store, recover the chain and subscribe to ``bus``."""
    settings = settings or get_settings()
    store, pool = await create_ledger_store(settings)
    subscriber = AuditSubscriber(bus, store, config=settings.audit)
    try:
        await subscriber.start()
    except Exception:
        if pool is not None:
            await pool.close()
        raise
    if start_metrics_server(settings.observability.metrics):
        logger.info("metrics_server_started", port=settings.observability.metrics.port)
    return AuditLedger(store=store, subscriber=subscriber, pool=pool)
