"""
FastAPI metrics API over the observability tables.

- routes.py: GET /events, /events/today, /events/{id}, /transactions, /transactions/{id}, /health
- dependencies.py: Settings and service graph singletons
- middleware.py: Request id and caller attribution per request
- models.py: API-specific response models
- error_handlers.py: Exception handlers (database errors are reported before responding)
"""

from transaction_retry.api import dependencies, error_handlers, models
from transaction_retry.api.routes import health_router, router

__all__ = [
    "router",
    "health_router",
    "dependencies",
    "error_handlers",
    "models",
]
