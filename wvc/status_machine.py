"""
status_machine.py
=================
Capa de Dominio — WVC Controlador de Válvula de Agua
Máquina de estados del ControlStatus visible para la presentación.

Estados válidos:
    READY       → En reposo, controles habilitados
    OPENING     → Orden "open" en vuelo
    CLOSING     → Orden "close" en vuelo
    ALERTED     → Agua detectada (tiene prioridad de visualización)
    SUCCEEDED   → Orden confirmada por la válvula (transitorio)
    FAILED      → Orden fallida o sin ACK (transitorio)
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Optional

from wvc.broadcast import Broadcast, Subscription
from wvc.models import ControlStatus, StatusKind

logger = logging.getLogger(__name__)


# ── Excepciones de dominio ───────────────────────────────────────────────────

class InvalidStateTransitionError(Exception):
    """Se lanza cuando se intenta una transición de estado no permitida."""
    pass


# ── Transiciones permitidas ──────────────────────────────────────────────────

_COMMAND_START = [StatusKind.OPENING, StatusKind.CLOSING]

VALID_TRANSITIONS: dict[StatusKind, list[StatusKind]] = {
    StatusKind.READY:     [*_COMMAND_START, StatusKind.ALERTED],
    StatusKind.OPENING:   [StatusKind.SUCCEEDED, StatusKind.FAILED, StatusKind.ALERTED],
    StatusKind.CLOSING:   [StatusKind.SUCCEEDED, StatusKind.FAILED, StatusKind.ALERTED],
    StatusKind.SUCCEEDED: [StatusKind.READY, *_COMMAND_START, StatusKind.ALERTED],
    StatusKind.FAILED:    [StatusKind.READY, *_COMMAND_START, StatusKind.ALERTED],
    StatusKind.ALERTED:   [StatusKind.ALERTED, StatusKind.READY],
}


# ── StatusMachine ────────────────────────────────────────────────────────────

class StatusMachine:
    """
    Mantiene el ControlStatus activo con validación de transiciones.

    Exactamente un estado está activo en cada instante. Cada cambio se
    registra en el historial, se notifica al callback opcional y se
    difunde a los suscriptores (replay del último estado).

    Uso:
        machine = StatusMachine()
        machine.transition(ControlStatus.pending(CommandKind.CLOSE))
        print(machine.current.kind)   # StatusKind.CLOSING
    """

    HISTORY_SIZE: int = 50

    def __init__(
        self,
        initial_status: Optional[ControlStatus] = None,
        on_status_change: Optional[Callable[[ControlStatus, ControlStatus], None]] = None,
    ) -> None:
        self._status: ControlStatus = initial_status or ControlStatus.ready()
        self._on_status_change = on_status_change
        self._history: deque[ControlStatus] = deque([self._status], maxlen=self.HISTORY_SIZE)
        self._updates: Broadcast[ControlStatus] = Broadcast(buffer_size=8)
        self._updates.publish(self._status)
        logger.info("[STATE] StatusMachine inicializada. Estado: %s", self._status.kind.value)

    # ── Propiedades públicas ─────────────────────────────────────────────────

    @property
    def current(self) -> ControlStatus:
        return self._status

    @property
    def history(self) -> list[ControlStatus]:
        """Devuelve una copia del historial de estados."""
        return list(self._history)

    def subscribe(self) -> Subscription[ControlStatus]:
        return self._updates.subscribe()

    # ── Lógica de transición ─────────────────────────────────────────────────

    def can_transition(self, kind: StatusKind) -> bool:
        return kind in VALID_TRANSITIONS.get(self._status.kind, [])

    def transition(self, new_status: ControlStatus) -> ControlStatus:
        """
        Aplica el nuevo estado tras validarlo.

        Returns:
            El estado anterior.

        Raises:
            InvalidStateTransitionError: Si la transición no está permitida.
        """
        self._validate_transition(new_status.kind)
        return self._apply(new_status)

    def reset(self, status: Optional[ControlStatus] = None) -> ControlStatus:
        """Fuerza un estado (READY por defecto) sin validación."""
        status = status or ControlStatus.ready()
        logger.warning("[STATE] Reset forzado a %s", status.kind.value)
        return self._apply(status)

    def close(self) -> None:
        self._updates.close()

    def _apply(self, new_status: ControlStatus) -> ControlStatus:
        previous = self._status
        self._status = new_status
        self._history.append(new_status)

        if new_status.kind in (StatusKind.ALERTED, StatusKind.FAILED):
            logger.error(
                "[STATE] ⚠ %s → %s %s",
                previous.kind.value,
                new_status.kind.value,
                new_status.message or "",
            )
        else:
            logger.info("[STATE] %s → %s", previous.kind.value, new_status.kind.value)

        self._updates.publish(new_status)
        if self._on_status_change:
            self._on_status_change(previous, new_status)
        return previous

    def _validate_transition(self, kind: StatusKind) -> None:
        allowed = VALID_TRANSITIONS.get(self._status.kind, [])
        if kind not in allowed:
            raise InvalidStateTransitionError(
                f"Transición inválida: {self._status.kind.value} → {kind.value}. "
                f"Permitidas desde {self._status.kind.value}: "
                f"{[s.value for s in allowed]}"
            )
