"""
Infrastructure layer for field operations.

Contains adapters implementing the domain ports: data gateways, the durable
action queue, session stores, connectivity probes, notifiers and report
renderers.
"""

from fieldops.infrastructure.connectivity import HttpConnectivityProbe, ManualConnectivity
from fieldops.infrastructure.gateway import InMemoryGateway, RestGateway
from fieldops.infrastructure.notify import CollectingNotifier, ConsoleNotifier
from fieldops.infrastructure.persistence import (
    FilesystemSessionStore,
    InMemoryActionQueue,
    InMemorySessionStore,
    SQLiteActionQueue,
)
from fieldops.infrastructure.reports import PdfReportRenderer, PlainTextReportRenderer

__all__ = [
    # Gateways
    "InMemoryGateway",
    "RestGateway",
    # Persistence
    "InMemoryActionQueue",
    "SQLiteActionQueue",
    "InMemorySessionStore",
    "FilesystemSessionStore",
    # Connectivity
    "ManualConnectivity",
    "HttpConnectivityProbe",
    # Notifiers
    "ConsoleNotifier",
    "CollectingNotifier",
    # Report renderers
    "PdfReportRenderer",
    "PlainTextReportRenderer",
]
