"""
mqtt_comm.py
============
Capa de Infraestructura — WVC Controlador de Válvula de Agua
Sesión publish/subscribe con el broker MQTT (aiomqtt).

Topics (estilo Adafruit IO):
    <user>/feeds/water-sensor    ← telemetría del sensor
    <user>/feeds/valve-control   → "open" / "close"
    <user>/feeds/valve-ack       ← "opened" / "closed"
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import time
from typing import Callable, Optional
from urllib.parse import urlsplit

import aiomqtt

from wvc.models import CommandTransportError, ConnectError
from wvc.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)

TLS_SCHEMES   = ("ssl", "mqtts", "tls")
PLAIN_SCHEMES = ("mqtt", "tcp")


def parse_broker_url(broker_url: str) -> tuple[str, int, bool]:
    """Devuelve (host, puerto, usa_tls) a partir de mqtt://, ssl:// o mqtts://."""
    parts = urlsplit(broker_url)
    scheme = parts.scheme.lower()
    if scheme not in TLS_SCHEMES + PLAIN_SCHEMES:
        raise ValueError(f"Esquema de broker no soportado: {broker_url!r}")
    if not parts.hostname:
        raise ValueError(f"Broker sin host: {broker_url!r}")
    tls = scheme in TLS_SCHEMES
    port = parts.port or (8883 if tls else 1883)
    return parts.hostname, port, tls


class MQTTTransport(Transport):
    """
    Transporte sobre un broker MQTT.

    Suscribe con QoS 1 al topic del sensor y al de ACK en cada conexión
    (sesión limpia). Los mensajes retenidos se marcan como `replay`.
    """

    QOS: int = 1

    def __init__(
        self,
        broker_url:    str = "ssl://io.adafruit.com:8883",
        username:      str = "",
        key:           str = "",
        sensor_topic:  str = "feeds/water-sensor",
        control_topic: str = "feeds/valve-control",
        ack_topic:     str = "feeds/valve-ack",
        client_id_prefix: str = "WaterValveController",
        connect_timeout_s: float = 10.0,
        keepalive_s:   int = 300,
        reconnect_delay_ms: Optional[int] = None,
        client_factory: Optional[Callable[..., aiomqtt.Client]] = None,
    ) -> None:
        super().__init__(
            telemetry_channel=sensor_topic,
            ack_topic=ack_topic,
            reconnect_delay_ms=reconnect_delay_ms,
        )
        self._host, self._port, self._tls = parse_broker_url(broker_url)
        self._broker        = broker_url
        self._username      = username or None
        self._key           = key or None
        self.control_topic  = control_topic
        self._client_id     = f"{client_id_prefix}_{int(time.time() * 1000)}"
        self._timeout       = connect_timeout_s
        self._keepalive     = keepalive_s
        self._client_factory = client_factory or aiomqtt.Client
        self._client: Optional[aiomqtt.Client] = None
        self._stack:  Optional[contextlib.AsyncExitStack] = None
        logger.info("[MQTT] MQTTTransport inicializado. Broker: %s", broker_url)

    @classmethod
    def from_settings(cls, settings) -> "MQTTTransport":
        return cls(
            broker_url=settings.broker_url,
            username=settings.username,
            key=settings.key,
            sensor_topic=settings.sensor_topic,
            control_topic=settings.control_topic,
            ack_topic=settings.ack_topic,
            client_id_prefix=settings.client_id_prefix,
            connect_timeout_s=settings.connect_timeout_s,
            keepalive_s=settings.keepalive_s,
            reconnect_delay_ms=settings.reconnect_delay_ms,
        )

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def topics(self) -> list[str]:
        return [self.telemetry_channel, self.ack_topic]

    # ── Sesión ───────────────────────────────────────────────────────────────

    def _build_client(self) -> aiomqtt.Client:
        return self._client_factory(
            hostname=self._host,
            port=self._port,
            username=self._username,
            password=self._key,
            identifier=self._client_id,
            keepalive=self._keepalive,
            timeout=self._timeout,
            clean_session=True,
            tls_context=ssl.create_default_context() if self._tls else None,
        )

    async def _open(self) -> None:
        logger.info("[MQTT] Conectando a broker %s...", self._broker)
        stack = contextlib.AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._build_client())
            for topic in self.topics:
                await client.subscribe(topic, qos=self.QOS)
                logger.info("[MQTT] SUBSCRIBE ← %s", topic)
        except aiomqtt.MqttError as exc:
            await stack.aclose()
            raise ConnectError(f"Error de conexión: {exc}") from exc
        self._client = client
        self._stack  = stack

    async def _close(self) -> None:
        stack, self._stack, self._client = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except aiomqtt.MqttError as exc:
            logger.warning("[MQTT] Cierre con error: %s", exc)

    async def _pump(self) -> None:
        client = self._client
        if client is None:
            return
        async for message in client.messages:
            self._dispatch(InboundMessage(
                channel=message.topic.value,
                payload=_decode(message.payload),
                replay=bool(message.retain),
            ))

    # ── Órdenes ──────────────────────────────────────────────────────────────

    async def transmit(self, payload: str) -> Optional[int]:
        client = self._client
        if client is None or not self.is_connected:
            raise CommandTransportError("Broker no conectado")
        logger.info("[MQTT] PUBLISH → %s: %s", self.control_topic, payload)
        try:
            await client.publish(self.control_topic, payload, qos=self.QOS, retain=False)
        except aiomqtt.MqttError as exc:
            raise CommandTransportError(f"Publicación fallida: {exc}") from exc
        return None


def _decode(payload) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    if payload is None:
        return ""
    return str(payload)
