"""Checkout domain API package."""

from checkout.api.routes import checkout_router, recurring_router, schedule_router

__all__ = ["checkout_router", "recurring_router", "schedule_router"]
