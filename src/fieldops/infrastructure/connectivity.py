"""Connectivity adapters."""

import logging
from collections.abc import Callable

import httpx

from fieldops.domain.interfaces import ConnectivityInterface

logger = logging.getLogger(__name__)


class ManualConnectivity(ConnectivityInterface):
    """Online flag flipped explicitly (tests, demos, operator override)."""

    def __init__(self, online: bool = True) -> None:
        self.online = online
        self._listeners: list[Callable[[], None]] = []

    def is_online(self) -> bool:
        return self.online

    def add_reconnect_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def go_offline(self) -> None:
        self.online = False

    def go_online(self) -> None:
        was_offline = not self.online
        self.online = True
        if was_offline:
            for callback in list(self._listeners):
                callback()


class HttpConnectivityProbe(ConnectivityInterface):
    """
    Reports online when a health URL answers within the timeout.

    Any response below 500 counts as reachable; the probe only asks whether
    the store can be talked to, not whether the request was authorized.
    Reconnect listeners fire on the first successful probe after a failed one.
    """

    def __init__(
        self,
        health_url: str,
        timeout: float = 3.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._health_url = health_url
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._listeners: list[Callable[[], None]] = []
        self._last_online: bool | None = None

    def is_online(self) -> bool:
        try:
            response = self._client.get(self._health_url)
            online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug("Connectivity probe failed: %s", e)
            online = False

        reconnected = online and self._last_online is False
        self._last_online = online
        if reconnected:
            logger.info("Store reachable again")
            for callback in list(self._listeners):
                callback()
        return online

    def add_reconnect_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def close(self) -> None:
        self._client.close()
