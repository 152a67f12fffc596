"""API router package for endpoint composition."""

from .health import api_create_health_router
from .instances import api_create_instances_router
from .runtimes import api_create_runtimes_router

__all__ = ["api_create_health_router", "api_create_instances_router", "api_create_runtimes_router"]
