"""Data gateway adapters."""

from fieldops.infrastructure.gateway.memory import InMemoryGateway
from fieldops.infrastructure.gateway.rest import RestGateway

__all__ = ["InMemoryGateway", "RestGateway"]
