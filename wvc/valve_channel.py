"""
valve_channel.py
================
Caso de Uso — WVC Controlador de Válvula de Agua
Ida y vuelta de una orden a la válvula: envío + espera del ACK.

Pasos de send_command():
    1. Asegurar la conexión (Failure inmediato si ConnectError)
    2. Transmitir "open" / "close"
    3. Esperar el ACK: mensaje "opened"/"closed" en el topic de ACK,
       o status HTTP en [200, 299)
    4. Acotar la espera (5000ms) → Failure("timeout")

Produce exactamente un CommandOutcome por llamada y nunca reintenta.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import Optional

from wvc.models import (
    CommandError,
    CommandKind,
    CommandOutcome,
    CommandTimeout,
    CommandTransportError,
    ConnectError,
)
from wvc.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)

AckKey = tuple[str, str]


class PendingAckTable:
    """
    Correlación petición/respuesta: futuros pendientes por (topic, payload).

    Las peticiones concurrentes no se fusionan; cada ACK resuelve la
    espera más antigua de su clave (FIFO).
    """

    def __init__(self) -> None:
        self._pending: dict[AckKey, deque[asyncio.Future]] = defaultdict(deque)

    def __len__(self) -> int:
        return sum(len(q) for q in self._pending.values())

    def register(self, topic: str, payload: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._pending[(topic, payload)].append(future)
        return future

    def resolve(self, topic: str, payload: str) -> bool:
        waiters = self._pending.get((topic, payload))
        while waiters:
            future = waiters.popleft()
            if not future.done():
                future.set_result(payload)
                return True
        return False

    def discard(self, topic: str, payload: str, future: asyncio.Future) -> None:
        waiters = self._pending.get((topic, payload))
        if waiters and future in waiters:
            waiters.remove(future)
        if not waiters:
            self._pending.pop((topic, payload), None)

    def fail_all(self, error: Exception) -> int:
        failed = 0
        for waiters in self._pending.values():
            for future in waiters:
                if not future.done():
                    future.set_exception(error)
                    failed += 1
        self._pending.clear()
        return failed


class ValveCommandChannel:
    """
    Canal de órdenes sobre un Transport compartido.

    Uso:
        channel = ValveCommandChannel(transport, timeout_ms=5000)
        outcome = await channel.send_command(CommandKind.CLOSE)
        print(outcome.ok, outcome.reason)
    """

    COMMAND_TIMEOUT_MS: int = 5000

    def __init__(self, transport: Transport, timeout_ms: Optional[int] = None) -> None:
        self._transport  = transport
        self._timeout_ms = self.COMMAND_TIMEOUT_MS if timeout_ms is None else timeout_ms
        self._pending    = PendingAckTable()
        self._closed     = False
        self._remove_listener = transport.add_listener(self._on_message)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── Ida y vuelta ─────────────────────────────────────────────────────────

    async def send_command(self, kind: CommandKind) -> CommandOutcome:
        if self._closed:
            return CommandOutcome.failure(kind, CommandTransportError("Canal de válvula cerrado"))

        logger.info("[VALVE] Orden '%s' solicitada", kind.payload)
        t_start = asyncio.get_running_loop().time()

        if not self._transport.is_connected:
            try:
                await self._transport.connect()
            except ConnectError as exc:
                logger.error("[VALVE] ✗ Sin conexión: %s", exc)
                return CommandOutcome.failure(kind, CommandTransportError(str(exc)))

        try:
            await asyncio.wait_for(self._round_trip(kind), timeout=self._timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.error(
                "[VALVE] ✗ Sin ACK de '%s' tras %dms",
                kind.expected_ack, self._timeout_ms,
            )
            return CommandOutcome.failure(kind, CommandTimeout())
        except CommandError as exc:
            logger.error("[VALVE] ✗ Orden '%s' fallida: %s", kind.payload, exc)
            return CommandOutcome.failure(kind, exc)
        except Exception as exc:
            logger.error("[VALVE] ✗ Excepción de transporte: %s", exc)
            return CommandOutcome.failure(kind, CommandTransportError(str(exc) or type(exc).__name__))

        duration_ms = (asyncio.get_running_loop().time() - t_start) * 1000
        logger.info("[VALVE] ✓ ACK '%s' recibido (%.0fms)", kind.expected_ack, duration_ms)
        return CommandOutcome.success(kind)

    async def _round_trip(self, kind: CommandKind) -> None:
        ack_topic = self._transport.ack_topic
        if ack_topic is None:
            status = await self._transport.transmit(kind.payload)
            if status is None or not 200 <= status < 299:
                raise CommandTransportError(f"HTTP {status}")
            return

        # registrar antes de publicar: el ACK puede llegar antes que el await
        future = self._pending.register(ack_topic, kind.expected_ack)
        try:
            await self._transport.transmit(kind.payload)
            await future
        finally:
            self._pending.discard(ack_topic, kind.expected_ack, future)

    def _on_message(self, message: InboundMessage) -> None:
        ack_topic = self._transport.ack_topic
        if ack_topic is None or message.channel != ack_topic:
            return
        payload = message.payload.strip()
        if not self._pending.resolve(ack_topic, payload):
            logger.info("[VALVE] ACK '%s' sin orden pendiente", payload)

    async def close(self) -> None:
        self._closed = True
        self._remove_listener()
        failed = self._pending.fail_all(CommandTransportError("Canal de válvula cerrado"))
        if failed:
            logger.warning("[VALVE] %d espera(s) de ACK canceladas", failed)
