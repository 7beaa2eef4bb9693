"""Service layer."""

from .routing_service import RoutingService

__all__ = ["RoutingService"]
