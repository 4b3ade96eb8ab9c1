"""
http_stream.py
==============
Capa de Infraestructura — WVC Controlador de Válvula de Agua
Stream server-push (SSE) para la telemetría + request/response HTTP
para las órdenes (httpx).

    GET  {base}/events   → eventos "sensor" con el JSON de la lectura
    POST {base}/open     → ACK = status en [200, 299)
    POST {base}/close
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from wvc.models import CommandTransportError, ConnectError
from wvc.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)


# ── Decodificador SSE ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ServerEvent:
    event: str
    data:  str
    id:    Optional[str] = None


class SSEDecoder:
    """Acumula líneas `text/event-stream` y emite un evento por línea vacía."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._id: Optional[str] = None

    def feed(self, line: str) -> Optional[ServerEvent]:
        line = line.rstrip("\r\n")
        if not line:
            return self._flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        return None

    def _flush(self) -> Optional[ServerEvent]:
        if not self._data:
            self._event = ""
            return None
        event = ServerEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._id,
        )
        self._event = ""
        self._data = []
        # el id persiste entre eventos (last event id)
        return event


# ── Transporte HTTP ──────────────────────────────────────────────────────────

class HTTPStreamTransport(Transport):
    """
    Transporte unidireccional server-push + canal request/response.

    El ACK de cada orden es el propio código de respuesta, por eso
    `ack_topic` es None.
    """

    def __init__(
        self,
        base_url:     str = "http://192.168.4.1",
        events_path:  str = "/events",
        sensor_event: str = "sensor",
        username:     str = "",
        key:          str = "",
        connect_timeout_s: float = 10.0,
        reconnect_delay_ms: Optional[int] = None,
        client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
    ) -> None:
        super().__init__(
            telemetry_channel=sensor_event,
            ack_topic=None,
            reconnect_delay_ms=reconnect_delay_ms,
        )
        self._base_url    = base_url.rstrip("/")
        self._events_path = events_path
        self._auth        = (username, key) if username else None
        self._timeout     = connect_timeout_s
        self._client_factory = client_factory or httpx.AsyncClient
        self._client:   Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None
        self._stack:    Optional[contextlib.AsyncExitStack] = None
        self._last_event_id: Optional[str] = None
        logger.info("[HTTP] HTTPStreamTransport inicializado. Base: %s", self._base_url)

    @classmethod
    def from_settings(cls, settings) -> "HTTPStreamTransport":
        return cls(
            base_url=settings.http_base_url,
            events_path=settings.events_path,
            sensor_event=settings.sensor_event,
            username=settings.username,
            key=settings.key,
            connect_timeout_s=settings.connect_timeout_s,
            reconnect_delay_ms=settings.reconnect_delay_ms,
        )

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    # ── Sesión ───────────────────────────────────────────────────────────────

    async def _open(self) -> None:
        logger.info("[HTTP] Abriendo stream %s%s...", self._base_url, self._events_path)
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._last_event_id is not None:
            headers["Last-Event-ID"] = self._last_event_id

        stack = contextlib.AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._client_factory(
                base_url=self._base_url,
                auth=self._auth,
                timeout=httpx.Timeout(self._timeout, read=None),
            ))
            response = await stack.enter_async_context(
                client.stream("GET", self._events_path, headers=headers)
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await stack.aclose()
            raise ConnectError(f"Error de conexión: {exc}") from exc
        self._client   = client
        self._response = response
        self._stack    = stack

    async def _close(self) -> None:
        stack, self._stack = self._stack, None
        self._client = None
        self._response = None
        if stack is not None:
            await stack.aclose()

    async def _pump(self) -> None:
        response = self._response
        if response is None:
            return
        decoder = SSEDecoder()
        async for line in response.aiter_lines():
            event = decoder.feed(line)
            if event is None:
                continue
            replay = event.id is not None and event.id == self._last_event_id
            if event.id is not None:
                self._last_event_id = event.id
            self._dispatch(InboundMessage(channel=event.event, payload=event.data, replay=replay))

    # ── Órdenes ──────────────────────────────────────────────────────────────

    async def transmit(self, payload: str) -> Optional[int]:
        client = self._client
        if client is None or not self.is_connected:
            raise CommandTransportError("Endpoint HTTP no conectado")
        path = f"/{payload}"
        logger.info("[HTTP] POST → %s%s", self._base_url, path)
        try:
            response = await client.post(path)
        except httpx.HTTPError as exc:
            raise CommandTransportError(f"POST {path} fallido: {exc}") from exc
        logger.info("[HTTP] %s ← %s", path, response.status_code)
        return response.status_code
