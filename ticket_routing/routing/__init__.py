"""Ticket routing decision logic."""

from .engine import ReferenceData, RoutingEngine, route_ticket

__all__ = ["ReferenceData", "RoutingEngine", "route_ticket"]
