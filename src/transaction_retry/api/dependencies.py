"""
FastAPI dependency injection for the metrics API.

Provides the settings and the wired service graph as singletons, and the
read-side repository derived from them.
"""

from functools import lru_cache

from fastapi import Depends

from transaction_retry.config import Settings, settings
from transaction_retry.persistence.repository import EventRepository
from transaction_retry.services import TransactionRetryServices, build_services


@lru_cache()
def get_settings() -> Settings:
    """
    Get settings singleton.

    Returns:
        Settings instance
    """
    return settings


@lru_cache()
def get_services() -> TransactionRetryServices:
    """
    Get singleton service graph.

    Engines hold connection pools, so the graph is built once per process.
    The cache key is empty on purpose: Settings instances are not hashable.

    Returns:
        TransactionRetryServices instance
    """
    return build_services(get_settings())


def get_repository(
    services: TransactionRetryServices = Depends(get_services),
) -> EventRepository:
    """
    Get the read-side repository.

    Args:
        services: Service graph singleton (injected)

    Returns:
        EventRepository instance
    """
    return services.repository
