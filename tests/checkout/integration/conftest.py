import pytest
from checkout.api import checkout_router, recurring_router, schedule_router
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from shared.error_handlers import register_error_handlers


@pytest.fixture()
def client(_checkout_domain):
    app = FastAPI()

    @app.middleware("http")
    async def _checkout_context(request: Request, call_next):
        with _checkout_domain.domain_context():
            return await call_next(request)

    app.include_router(checkout_router)
    app.include_router(recurring_router)
    app.include_router(schedule_router)
    register_error_handlers(app)
    return TestClient(app)
