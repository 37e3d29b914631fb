"""Checkout bounded context: headless checkout sessions and recurring orders.

Drives a shopper's cart through the external commerce API (cart, checkout,
shipping, payment, order) and re-enters the same pipeline on a schedule for
standing recurring orders.
"""

import structlog
from protean.domain import Domain

checkout = Domain(name="checkout")

logger = structlog.get_logger(__name__)
