"""
sensor_channel.py
=================
Caso de Uso — WVC Controlador de Válvula de Agua
Ingesta de telemetría del sensor de fugas.

Secuencia por mensaje:
    1. Decodificar el payload → SensorReading (malformados: log + descarte)
    2. Difundir la lectura (callbacks en orden de llegada + Broadcast)
    3. Si nivel >= umbral o triggered → escribir/reemplazar la Alert
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from wvc.alert_store import AlertStore
from wvc.broadcast import Broadcast, Subscription
from wvc.codec import AutoCodec, TelemetryCodec
from wvc.models import Alert, MalformedMessage, SensorReading
from wvc.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)

ReadingListener = Callable[[SensorReading], None]


class SensorIngestionChannel:
    """
    Suscripción de larga duración a la telemetría.

    Nunca termina por error: los payloads inválidos se descartan y la
    reconexión la gestiona el Transport. Un mensaje re-entregado tras
    reconectar (retenido / mismo id) e idéntico al último procesado se
    ignora para no duplicar la alerta.
    """

    DEFAULT_THRESHOLD: int = 1000
    BUFFER_SIZE:       int = 16

    def __init__(
        self,
        transport: Transport,
        store: AlertStore,
        codec: Optional[TelemetryCodec] = None,
        threshold: int = DEFAULT_THRESHOLD,
        buffer_size: int = BUFFER_SIZE,
    ) -> None:
        self._transport = transport
        self._store     = store
        self._codec     = codec or AutoCodec()
        self._threshold = threshold
        self._events: Broadcast[SensorReading] = Broadcast(buffer_size=buffer_size)
        self._listeners: list[ReadingListener] = []
        self._unsubscribe: list[Callable[[], None]] = []
        self._last_payload: Optional[str] = None
        self._running = False
        self.received_count  = 0
        self.malformed_count = 0
        self.replay_count    = 0

    # ── Propiedades públicas ─────────────────────────────────────────────────

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def latest_reading(self) -> Optional[SensorReading]:
        return self._events.latest

    def subscribe(self) -> Subscription[SensorReading]:
        """Lecturas con replay de la última y descarte de la más antigua."""
        return self._events.subscribe()

    # ── Ciclo de vida ────────────────────────────────────────────────────────

    async def start(self, on_event: Optional[ReadingListener] = None) -> None:
        if on_event is not None:
            self._listeners.append(on_event)
        if self._running:
            return
        self._running = True
        self._unsubscribe = [
            self._transport.add_listener(self._on_message),
            self._transport.add_connection_listener(self._store.set_connected),
        ]
        self._store.set_connected(self._transport.is_connected)
        logger.info(
            "[SENSOR] Escuchando '%s' (umbral=%d)",
            self._transport.telemetry_channel,
            self._threshold,
        )
        await self._transport.start()

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for remove in self._unsubscribe:
            remove()
        self._unsubscribe = []
        self._events.close()
        await self._transport.disconnect()
        self._store.set_connected(False)
        logger.info("[SENSOR] Ingesta detenida")

    # ── Procesado ────────────────────────────────────────────────────────────

    def _on_message(self, message: InboundMessage) -> None:
        if message.channel != self._transport.telemetry_channel:
            return
        if message.replay and message.payload == self._last_payload:
            self.replay_count += 1
            logger.info("[SENSOR] Mensaje re-entregado tras reconexión ignorado")
            return
        self.handle_payload(message.payload)

    def handle_payload(self, payload: str) -> Optional[SensorReading]:
        """Procesa un payload crudo. Devuelve la lectura o None si se descartó."""
        self._last_payload = payload
        try:
            reading = self._codec.decode(payload)
        except MalformedMessage as exc:
            self.malformed_count += 1
            logger.warning("[SENSOR] Payload descartado: %s", exc)
            return None

        self.received_count += 1
        logger.info(
            "[SENSOR] Lectura: nivel=%d triggered=%s",
            reading.level, reading.triggered,
        )

        self._events.publish(reading)
        for listener in list(self._listeners):
            try:
                listener(reading)
            except Exception:
                logger.exception("[SENSOR] Callback de lectura falló")

        if reading.is_leak(self._threshold):
            self._store.set_alert(Alert(reading=reading))
        return reading
