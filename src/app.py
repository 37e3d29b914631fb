"""Checkout orchestrator FastAPI application.

Serves the checkout session API, recurring orders, the scheduled sweep
endpoint and the storefront proxy (cart gateway and GraphQL).
Checkout routes run inside the checkout domain context; the proxy routes
are stateless and need none.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
from checkout.domain import checkout  # noqa: E402
from checkout.utils.logging import configure_checkout_logging  # noqa: E402
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

configure_checkout_logging()
checkout.init()

# ---------------------------------------------------------------------------
# Route-to-domain mapping
# ---------------------------------------------------------------------------
_ROUTE_DOMAIN_MAP = {
    "/checkout-sessions": checkout,
    "/recurring-orders": checkout,
    "/process-recurring-orders": checkout,
}


def _resolve_domain(path: str):
    """Return the domain for the given request path, or None."""
    for prefix, domain in _ROUTE_DOMAIN_MAP.items():
        if path.startswith(prefix):
            return domain
    return None


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Checkout Orchestrator API",
    description="Headless checkout sessions, recurring orders and storefront proxy",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the checkout domain context for checkout requests."""
    domain = _resolve_domain(request.url.path)
    if domain is not None:
        with domain.domain_context():
            response = await call_next(request)
        return response
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers and error handlers
# ---------------------------------------------------------------------------
from checkout.api import checkout_router, recurring_router, schedule_router  # noqa: E402
from proxy import gateway_router, graphql_router  # noqa: E402
from shared.error_handlers import register_error_handlers  # noqa: E402

app.include_router(checkout_router)
app.include_router(recurring_router)
app.include_router(schedule_router)
app.include_router(gateway_router)
app.include_router(graphql_router)

register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domains": {"checkout": {"name": checkout.name}},
        }
    )
