"""
simulator.py
============
Transporte en memoria con una válvula simulada al otro lado.

No controla hardware: emula el par remoto (broker + válvula) con delays
y logs para pruebas locales y tests. El delay de 200ms emula el tiempo
real de respuesta del actuador.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from wvc.models import CommandKind, CommandTransportError, ConnectError
from wvc.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)


class ValvePosition(str, Enum):
    OPEN   = "OPEN"
    CLOSED = "CLOSED"


class LoopbackTransport(Transport):
    """
    Transporte en memoria.

    Con `ack_topic` la válvula responde publicando "opened"/"closed" en ese
    canal; sin él responde con un código HTTP (`http_status`).

    Controles de simulación:
        respond        → False: la válvula nunca envía el ACK
        fail_connects  → número de connect() que fallarán a continuación
        drop()         → corta la sesión como si cayera la red
        inject()       → entrega un mensaje entrante (telemetría, ACK...)
    """

    ACK_DELAY_MS: int = 200

    def __init__(
        self,
        telemetry_channel: str = "feeds/water-sensor",
        ack_topic: Optional[str] = "feeds/valve-ack",
        reconnect_delay_ms: Optional[int] = None,
        ack_delay_ms: Optional[int] = None,
        http_status: int = 200,
    ) -> None:
        super().__init__(
            telemetry_channel=telemetry_channel,
            ack_topic=ack_topic,
            reconnect_delay_ms=reconnect_delay_ms,
        )
        self.ack_delay_ms  = self.ACK_DELAY_MS if ack_delay_ms is None else ack_delay_ms
        self.http_status   = http_status
        self.respond       = True
        self.fail_connects = 0
        self.connect_calls = 0
        self.transmitted: list[str] = []
        self.position = ValvePosition.OPEN
        self._inbox: Optional[asyncio.Queue] = None
        self._acks: set[asyncio.Task] = set()

    # ── Controles de simulación ──────────────────────────────────────────────

    def inject(self, payload: str, channel: Optional[str] = None, replay: bool = False) -> None:
        if self._inbox is None:
            raise RuntimeError("LoopbackTransport no conectado")
        self._inbox.put_nowait(InboundMessage(
            channel=channel or self.telemetry_channel,
            payload=payload,
            replay=replay,
        ))

    def drop(self, reason: str = "red caída (simulada)") -> None:
        if self._inbox is not None:
            self._inbox.put_nowait(ConnectionResetError(reason))

    # ── Sesión ───────────────────────────────────────────────────────────────

    async def _open(self) -> None:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectError("Broker inalcanzable (simulado)")
        self._inbox = asyncio.Queue()
        logger.info("[SIM] Sesión en memoria abierta")

    async def _close(self) -> None:
        self._inbox = None
        for task in list(self._acks):
            task.cancel()
        self._acks.clear()

    async def _pump(self) -> None:
        inbox = self._inbox
        while inbox is not None:
            item = await inbox.get()
            if isinstance(item, Exception):
                raise item
            self._dispatch(item)

    # ── Válvula simulada ─────────────────────────────────────────────────────

    async def transmit(self, payload: str) -> Optional[int]:
        if not self.is_connected:
            raise CommandTransportError("Loopback no conectado")
        kind = CommandKind(payload)
        self.transmitted.append(payload)
        logger.info("[SIM] Válvula recibió '%s'", payload)

        if self.ack_topic is None:
            await asyncio.sleep(self.ack_delay_ms / 1000)
            self._actuate(kind)
            return self.http_status

        if self.respond:
            task = asyncio.create_task(self._send_ack(kind))
            self._acks.add(task)
            task.add_done_callback(self._acks.discard)
        return None

    async def _send_ack(self, kind: CommandKind) -> None:
        await asyncio.sleep(self.ack_delay_ms / 1000)
        self._actuate(kind)
        if self._inbox is not None:
            self.inject(kind.expected_ack, channel=self.ack_topic)

    def _actuate(self, kind: CommandKind) -> None:
        self.position = ValvePosition.OPEN if kind is CommandKind.OPEN else ValvePosition.CLOSED
        logger.info("[SIM] Válvula %s", self.position.value)
