"""
Client Dedupe API Routes Package.

Example:
    from api.routes import clients_router

    app.include_router(clients_router)
"""

from api.routes.clients import router as clients_router


__all__ = [
    "clients_router",
]
