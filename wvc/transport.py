"""
transport.py
============
Capa de Infraestructura — WVC Controlador de Válvula de Agua
Conexión lógica única hacia el broker o el endpoint HTTP.

Responsabilidades:
    1. connect() / disconnect() del canal físico
    2. Sesión supervisada: reconexión con retardo FIJO (5s), sin límite
       de intentos y sin backoff exponencial
    3. Despacho de mensajes entrantes a los oyentes registrados
    4. Exponer la condición "desconectado" (is_connected + oyentes)

Debilidad conocida: contra un endpoint muerto de forma permanente la
sesión reintenta para siempre.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from wvc.models import ConnectError

if TYPE_CHECKING:
    from wvc.config import WVCSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    channel: str            # topic MQTT o tipo de evento SSE
    payload: str
    replay:  bool = False   # mensaje retenido / re-entregado tras reconectar


MessageListener    = Callable[[InboundMessage], None]
ConnectionListener = Callable[[bool], None]


class Transport(ABC):
    """
    Base de los transportes. Las subclases implementan el canal concreto:

        _open()      establece la sesión (lanza ConnectError)
        _close()     libera la sesión
        _pump()      lee mensajes hasta perder la conexión
        transmit()   envía una orden; devuelve código HTTP o None

    `ack_topic` distinto de None indica que el ACK llega como mensaje
    asíncrono en ese canal; None indica que el ACK es la respuesta.
    """

    RECONNECT_DELAY_MS: int = 5000

    def __init__(
        self,
        telemetry_channel: str,
        ack_topic: Optional[str] = None,
        reconnect_delay_ms: Optional[int] = None,
    ) -> None:
        self.telemetry_channel = telemetry_channel
        self.ack_topic         = ack_topic
        self.reconnect_delay_ms = self.RECONNECT_DELAY_MS if reconnect_delay_ms is None else reconnect_delay_ms
        self.reconnect_attempts = 0

        self._listeners:            list[MessageListener] = []
        self._connection_listeners: list[ConnectionListener] = []
        self._connected   = False
        self._supervising = False
        self._connect_lock = asyncio.Lock()
        self._reader:      Optional[asyncio.Task] = None
        self._reconnector: Optional[asyncio.Task] = None

    # ── Propiedades públicas ─────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_supervising(self) -> bool:
        return self._supervising

    @property
    def name(self) -> str:
        return type(self).__name__

    # ── Oyentes ──────────────────────────────────────────────────────────────

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def add_connection_listener(self, listener: ConnectionListener) -> Callable[[], None]:
        self._connection_listeners.append(listener)
        return (
            lambda: self._connection_listeners.remove(listener)
            if listener in self._connection_listeners else None
        )

    # ── Ciclo de vida ────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Establece la conexión si no existe.

        Raises:
            ConnectError: Fallo de red o autenticación.
        """
        async with self._connect_lock:
            if self._connected:
                return
            logger.info("[NET] %s conectando...", self.name)
            try:
                await self._open()
            except ConnectError:
                raise
            except (OSError, asyncio.TimeoutError) as exc:
                raise ConnectError(f"Error de conexión: {exc}") from exc

            self._set_connected(True)
            self._reader = asyncio.create_task(self._read_forever())
            logger.info("[NET] %s ✓ conectado", self.name)

    async def start(self) -> None:
        """Inicia la sesión supervisada. Nunca lanza por fallo de red."""
        self._supervising = True
        try:
            await self.connect()
        except ConnectError as exc:
            logger.warning("[NET] Conexión inicial fallida: %s", exc)
            self._schedule_reconnect()

    async def disconnect(self) -> None:
        """Cierre deliberado: detiene la supervisión y libera la sesión."""
        self._supervising = False
        await _cancel(self._reconnector)
        self._reconnector = None

        current = asyncio.current_task()
        if self._reader is not current:
            await _cancel(self._reader)
        self._reader = None

        if self._connected:
            self._set_connected(False)
            await self._safe_close()
        logger.info("[NET] %s desconectado", self.name)

    # ── Internos ─────────────────────────────────────────────────────────────

    async def _read_forever(self) -> None:
        try:
            await self._pump()
            reason = "stream finalizado por el servidor"
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
        await self._connection_lost(reason)

    async def _connection_lost(self, reason: str) -> None:
        logger.warning("[NET] ✗ Conexión perdida: %s", reason)
        self._set_connected(False)
        await self._safe_close()
        if self._supervising:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnector is not None and not self._reconnector.done():
            return
        self._reconnector = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self._supervising:
            logger.info("[NET] Reintentando en %sms...", self.reconnect_delay_ms)
            await asyncio.sleep(self.reconnect_delay_ms / 1000)
            if not self._supervising:
                return
            self.reconnect_attempts += 1
            try:
                await self.connect()
            except ConnectError as exc:
                logger.warning(
                    "[NET] Reconexión #%d fallida: %s",
                    self.reconnect_attempts, exc,
                )
                continue
            logger.info("[NET] ✓ Reconectado tras %d intento(s)", self.reconnect_attempts)
            return

    async def _safe_close(self) -> None:
        try:
            await self._close()
        except Exception as exc:
            logger.warning("[NET] Error liberando la sesión: %s", exc)

    def _set_connected(self, connected: bool) -> None:
        if self._connected == connected:
            return
        self._connected = connected
        for listener in list(self._connection_listeners):
            try:
                listener(connected)
            except Exception:
                logger.exception("[NET] Oyente de conexión falló")

    def _dispatch(self, message: InboundMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("[NET] Oyente falló procesando %s", message.channel)

    # ── Contrato de subclases ────────────────────────────────────────────────

    @abstractmethod
    async def _open(self) -> None: ...

    @abstractmethod
    async def _close(self) -> None: ...

    @abstractmethod
    async def _pump(self) -> None: ...

    @abstractmethod
    async def transmit(self, payload: str) -> Optional[int]:
        """Envía la orden. Lanza CommandTransportError si el envío falla."""


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def build_transport(settings: "WVCSettings") -> Transport:
    """Selecciona la implementación según la configuración."""
    if settings.transport == "mqtt":
        from wvc.mqtt_comm import MQTTTransport
        return MQTTTransport.from_settings(settings)
    if settings.transport == "http":
        from wvc.http_stream import HTTPStreamTransport
        return HTTPStreamTransport.from_settings(settings)
    raise ValueError(f"Transporte desconocido: {settings.transport!r}")
