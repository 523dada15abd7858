# API Routes Module
from sharkszone.api.routes import (
    subscriptions,
    checkout,
    paypal,
    webhooks,
)

__all__ = [
    "subscriptions",
    "checkout",
    "paypal",
    "webhooks",
]
