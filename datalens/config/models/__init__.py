"""Configuration model exports.

    from datalens.config.models import AuditConfig, StorageConfig
"""

from datalens.config.models.audit import AppendRetryConfig, AuditConfig, ChainScope
from datalens.config.models.eventbus import EventBusConfig
from datalens.config.models.observability import (
    LoggingConfig,
    MetricsConfig,
    ObservabilityConfig,
)
from datalens.config.models.storage import LedgerStoreConfig, StorageConfig

__all__ = [
    "AppendRetryConfig",
    "AuditConfig",
    "ChainScope",
    "EventBusConfig",
    "LedgerStoreConfig",
    "LoggingConfig",
    "MetricsConfig",
    "ObservabilityConfig",
    "StorageConfig",
]
