# API Routes Module
from app.api.routes import (
    chat,
    subscriptions,
    webhooks,
)

__all__ = [
    "chat",
    "subscriptions",
    "webhooks",
]
