from proxy.graphql import graphql_router
from proxy.routes import gateway_router

__all__ = ["gateway_router", "graphql_router"]
