"""
control_orchestrator.py
=======================
Caso de Uso Central — WVC Controlador de Válvula de Agua
Combina intenciones del operador, alertas del sensor y resultados de
las órdenes en una única secuencia de ControlStatus.

Transiciones:
    READY/SUCCEEDED/FAILED → OPENING | CLOSING     (intención del operador)
    OPENING/CLOSING        → SUCCEEDED | FAILED    (CommandOutcome)
    SUCCEEDED/FAILED       → READY                 (tras 3000ms, cancelable)
    cualquiera             → ALERTED               (alerta en el AlertStore)
    ALERTED                → READY                 (dismiss_alert)
    ALERTED                → OPENING | CLOSING     (dismiss_alert con orden en vuelo)

Mientras hay una orden en vuelo se rechazan nuevas órdenes (guard
clause) para que dos ACK no compitan por el mismo actuador.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from wvc.alert_store import AlertStore, StoreSnapshot
from wvc.broadcast import Subscription
from wvc.models import (
    Alert,
    CommandKind,
    CommandOutcome,
    CommandRequest,
    CommandTransportError,
    ControlStatus,
    StatusKind,
)
from wvc.sensor_channel import SensorIngestionChannel
from wvc.status_machine import StatusMachine
from wvc.valve_channel import ValveCommandChannel

logger = logging.getLogger(__name__)


# ── Excepciones ──────────────────────────────────────────────────────────────

class ControllerBusyError(Exception):
    """Se lanza cuando se pide una orden mientras otra sigue en vuelo."""
    pass


class ControllerClosedError(Exception):
    """Se lanza al reutilizar un controlador ya detenido con shutdown()."""
    pass


_SUCCESS_MESSAGES = {
    CommandKind.OPEN:  "Válvula abierta",
    CommandKind.CLOSE: "Válvula cerrada",
}


# ── ValveController ──────────────────────────────────────────────────────────

class ValveController:
    """
    Orquestador del controlador de válvula.

    Dependencias inyectadas:
        - store:     AlertStore             — estado compartido
        - valve:     ValveCommandChannel    — órdenes a la válvula
        - ingestion: SensorIngestionChannel — telemetría (opcional)

    Frontera con la presentación: `status`, `subscribe()`,
    `request_open()`, `request_close()` y `dismiss_alert()`.

    Uso:
        ctrl = ValveController(store, valve, ingestion)
        await ctrl.start()
        ctrl.request_close()
        ...
        await ctrl.shutdown()
    """

    AUTO_RESET_MS: int = 3000

    def __init__(
        self,
        store: AlertStore,
        valve: ValveCommandChannel,
        ingestion: Optional[SensorIngestionChannel] = None,
        auto_reset_ms: Optional[int] = None,
        auto_close_on_alert: bool = False,
        on_status_change: Optional[Callable[[ControlStatus, ControlStatus], None]] = None,
    ) -> None:
        self._store     = store
        self._valve     = valve
        self._ingestion = ingestion
        self._auto_reset_ms = self.AUTO_RESET_MS if auto_reset_ms is None else auto_reset_ms
        self._auto_close    = auto_close_on_alert
        self._machine = StatusMachine(on_status_change=on_status_change)
        self._reset_task: Optional[asyncio.Task] = None
        self._commands: set[asyncio.Task] = set()
        self._remove_observer: Optional[Callable[[], None]] = None
        self._shown_alert: Optional[Alert] = None
        self._last_outcome: Optional[CommandOutcome] = None
        self._started = False
        self._closing = False

    # ── Propiedades públicas ─────────────────────────────────────────────────

    @property
    def status(self) -> ControlStatus:
        return self._machine.current

    @property
    def history(self) -> list[ControlStatus]:
        return self._machine.history

    @property
    def controls_enabled(self) -> bool:
        """False mientras hay una orden en vuelo ("controles deshabilitados")."""
        return self._store.in_flight is None

    @property
    def last_outcome(self) -> Optional[CommandOutcome]:
        return self._last_outcome

    @property
    def store(self) -> AlertStore:
        return self._store

    def subscribe(self) -> Subscription[ControlStatus]:
        """Suscripción de solo lectura al ControlStatus (replay del actual)."""
        return self._machine.subscribe()

    # ── Ciclo de vida ────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._closing:
            raise ControllerClosedError("El controlador fue detenido; crear uno nuevo")
        if self._started:
            return
        self._started = True
        self._remove_observer = self._store.add_observer(self._on_store_change)

        # Alerta previa: sobrevive a reinicios de la presentación
        existing = self._store.current_alert()
        if existing is not None:
            logger.warning("[CTRL] Alerta existente al iniciar")
            self._show_alert(existing)

        if self._ingestion is not None:
            await self._ingestion.start()
        logger.info("[CTRL] ValveController iniciado. Estado: %s", self.status.kind.value)

    async def shutdown(self) -> None:
        """
        Cancela timer, órdenes en vuelo e ingesta; cierra el transporte.

        Es definitivo: el canal de órdenes y la difusión de estado quedan
        cerrados y start() lanza ControllerClosedError.
        """
        if self._closing:
            return
        logger.warning("[CTRL] ── Deteniendo controlador... ──")
        if self._remove_observer is not None:
            self._remove_observer()
            self._remove_observer = None
        self._closing = True
        self._cancel_auto_reset()

        await self._valve.close()
        for task in list(self._commands):
            task.cancel()
        for task in list(self._commands):
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._ingestion is not None:
            await self._ingestion.stop()
        transport = self._valve.transport
        if transport.is_connected or transport.is_supervising:
            await transport.disconnect()
        self._machine.close()
        self._started = False
        logger.info("[CTRL] ── Controlador detenido ──")

    # ── Intenciones del operador ─────────────────────────────────────────────

    def request_open(self) -> bool:
        return self._request(CommandKind.OPEN)

    def request_close(self) -> bool:
        return self._request(CommandKind.CLOSE)

    async def open_valve(self) -> CommandOutcome:
        return await self._execute(CommandKind.OPEN)

    async def close_valve(self) -> CommandOutcome:
        return await self._execute(CommandKind.CLOSE)

    def dismiss_alert(self) -> None:
        """
        Borra la alerta del store y deja la vista en READY, o en
        OPENING/CLOSING si hay una orden en vuelo para que su resultado
        se muestre al llegar.
        """
        self._shown_alert = None
        self._store.clear_alert()
        self._cancel_auto_reset()
        in_flight = self._store.in_flight
        if in_flight is None:
            self._machine.reset(ControlStatus.ready())
        else:
            self._machine.reset(ControlStatus.pending(in_flight.kind))

    # ── Órdenes ──────────────────────────────────────────────────────────────

    def _request(self, kind: CommandKind, origin: str = "operator") -> bool:
        try:
            request = self._begin(kind, origin)
        except (ControllerBusyError, ControllerClosedError) as exc:
            logger.warning("[CTRL] %s", exc)
            return False
        task = asyncio.create_task(self._run(request))
        self._commands.add(task)
        task.add_done_callback(self._commands.discard)
        return True

    async def _execute(self, kind: CommandKind) -> CommandOutcome:
        request = self._begin(kind, "operator")
        return await self._run(request)

    def _begin(self, kind: CommandKind, origin: str) -> CommandRequest:
        if self._closing:
            raise ControllerClosedError(f"Orden '{kind.payload}' rechazada: controlador detenido")
        request = CommandRequest(kind=kind, origin=origin)
        if not self._store.begin_command(request):
            raise ControllerBusyError(
                f"Orden '{kind.payload}' rechazada: ya hay una orden en vuelo"
            )
        logger.info("[CTRL] Orden '%s' (%s) iniciada", kind.payload, origin)
        if self.status.kind is StatusKind.ALERTED:
            # la alerta mantiene la prioridad de visualización
            logger.warning("[CTRL] Orden emitida con alerta activa")
        else:
            self._cancel_auto_reset()
            self._machine.transition(ControlStatus.pending(kind))
        return request

    async def _run(self, request: CommandRequest) -> CommandOutcome:
        try:
            outcome = await self._valve.send_command(request.kind)
        except asyncio.CancelledError:
            self._finish(request, CommandOutcome.failure(
                request.kind, CommandTransportError("Orden cancelada"),
            ))
            raise
        self._finish(request, outcome)
        return outcome

    def _finish(self, request: CommandRequest, outcome: CommandOutcome) -> None:
        self._store.end_command(request)
        self._last_outcome = outcome

        expected = StatusKind.OPENING if request.kind is CommandKind.OPEN else StatusKind.CLOSING
        if self.status.kind is not expected:
            logger.info(
                "[CTRL] Resultado '%s' registrado sin cambiar la vista (%s): ok=%s",
                request.kind.payload, self.status.kind.value, outcome.ok,
            )
            return

        if outcome.ok:
            self._machine.transition(ControlStatus.succeeded(_SUCCESS_MESSAGES[request.kind]))
        else:
            self._machine.transition(ControlStatus.failed(outcome.reason or "error"))
        self._schedule_auto_reset()

    # ── Auto-retorno a READY ─────────────────────────────────────────────────

    def _schedule_auto_reset(self) -> None:
        self._cancel_auto_reset()
        if self._closing:
            return
        self._reset_task = asyncio.create_task(self._auto_reset(self.status))

    async def _auto_reset(self, shown: ControlStatus) -> None:
        await asyncio.sleep(self._auto_reset_ms / 1000)
        if self.status is shown:
            self._reset_task = None
            self._machine.transition(ControlStatus.ready())

    def _cancel_auto_reset(self) -> None:
        task, self._reset_task = self._reset_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ── Alertas ──────────────────────────────────────────────────────────────

    def _on_store_change(self, snap: StoreSnapshot) -> None:
        alert = snap.alert
        if alert is None or alert is self._shown_alert:
            return
        self._show_alert(alert)
        if self._auto_close and snap.reason == "alert_raised" and self.controls_enabled:
            logger.error("[CTRL] ⚠ Cierre automático por detección de agua")
            self._request(CommandKind.CLOSE, origin="auto")

    def _show_alert(self, alert: Alert) -> None:
        self._shown_alert = alert
        self._cancel_auto_reset()
        self._machine.transition(ControlStatus.alerted(alert))
