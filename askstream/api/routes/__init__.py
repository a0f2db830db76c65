"""
askstream - API Routes

Route modules for the ask stream, tool confirmations and model listing.
"""

from .ask import router as ask_router
from .confirmations import router as confirmations_router
from .models import router as models_router

__all__ = [
    "ask_router",
    "confirmations_router",
    "models_router",
]
