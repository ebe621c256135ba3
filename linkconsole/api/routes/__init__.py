"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from linkconsole.api.routes import connections, notifications, owners

__all__ = [
    "connections",
    "notifications",
    "owners",
]
