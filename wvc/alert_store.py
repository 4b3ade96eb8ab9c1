"""
alert_store.py
==============
Capa de Dominio — WVC Controlador de Válvula de Agua
Almacén compartido de alerta y orden en vuelo.

Es el único recurso mutable compartido entre la ingesta del sensor y el
orquestador. Se inyecta explícitamente (nunca es un global del módulo).

Reglas:
    - set_alert() es last-write-wins.
    - clear_alert() es la única forma de eliminar una alerta y solo la
      invoca el descarte explícito del operador.
    - begin_command() garantiza como máximo una orden en vuelo.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from wvc.broadcast import Broadcast, Subscription
from wvc.models import Alert, CommandRequest

logger = logging.getLogger(__name__)


# ── DTOs ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StoreSnapshot:
    alert:     Optional[Alert]
    in_flight: Optional[CommandRequest]
    connected: bool
    reason:    str = "snapshot"
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


Observer = Callable[[StoreSnapshot], None]


# ── AlertStore ───────────────────────────────────────────────────────────────

class AlertStore:
    """
    Fuente única de verdad para la alerta activa y la orden en vuelo.

    Todas las lecturas y escrituras pasan por un threading.Lock; los
    observadores síncronos se notifican fuera del lock, en el hilo del
    escritor. La difusión asíncrona (watch) se publica siempre en el bucle
    de eventos que creó la suscripción: una escritura desde otro hilo se
    reenvía con loop.call_soon_threadsafe().

    Uso:
        store = AlertStore()
        remove = store.add_observer(lambda snap: print(snap.alert))
        store.set_alert(Alert(reading))
    """

    def __init__(self, buffer_size: int = 16) -> None:
        self._lock = threading.Lock()
        self._alert:     Optional[Alert] = None
        self._in_flight: Optional[CommandRequest] = None
        self._connected: bool = False
        self._observers: list[Observer] = []
        self._changes: Broadcast[StoreSnapshot] = Broadcast(buffer_size=buffer_size)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        logger.info("[STORE] AlertStore inicializado")

    # ── Alerta ───────────────────────────────────────────────────────────────

    def set_alert(self, alert: Alert) -> None:
        with self._lock:
            replaced = self._alert is not None
            self._alert = alert
            snap = self._snapshot_locked("alert_replaced" if replaced else "alert_raised")
        logger.error(
            "[STORE] ⚠ Alerta %s: nivel=%s triggered=%s",
            "reemplazada" if replaced else "activada",
            alert.reading.level,
            alert.reading.triggered,
        )
        self._notify(snap)

    def clear_alert(self) -> Optional[Alert]:
        with self._lock:
            previous = self._alert
            self._alert = None
            snap = self._snapshot_locked("alert_cleared")
        if previous is None:
            logger.info("[STORE] clear_alert() sin alerta activa")
        else:
            logger.warning("[STORE] Alerta descartada por el operador")
        self._notify(snap)
        return previous

    def current_alert(self) -> Optional[Alert]:
        with self._lock:
            return self._alert

    # ── Orden en vuelo ───────────────────────────────────────────────────────

    def begin_command(self, request: CommandRequest) -> bool:
        """Registra la orden si no hay otra en vuelo. Devuelve False si la rechaza."""
        with self._lock:
            if self._in_flight is not None:
                return False
            self._in_flight = request
            snap = self._snapshot_locked("command_started")
        self._notify(snap)
        return True

    def end_command(self, request: CommandRequest) -> None:
        with self._lock:
            if self._in_flight is not request:
                return
            self._in_flight = None
            snap = self._snapshot_locked("command_finished")
        self._notify(snap)

    @property
    def in_flight(self) -> Optional[CommandRequest]:
        with self._lock:
            return self._in_flight

    # ── Enlace ───────────────────────────────────────────────────────────────

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            if self._connected == connected:
                return
            self._connected = connected
            snap = self._snapshot_locked("connected" if connected else "disconnected")
        self._notify(snap)

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    # ── Publicación / suscripción ────────────────────────────────────────────

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def add_observer(self, observer: Observer) -> Callable[[], None]:
        """Registra un observador síncrono. Devuelve la función para quitarlo."""
        with self._lock:
            self._observers.append(observer)

        def remove() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return remove

    def watch(self) -> Subscription[StoreSnapshot]:
        """Suscripción asíncrona a los cambios (replay del último)."""
        self._loop = _running_loop() or self._loop
        return self._changes.subscribe()

    def _snapshot_locked(self, reason: str = "snapshot") -> StoreSnapshot:
        return StoreSnapshot(
            alert=self._alert,
            in_flight=self._in_flight,
            connected=self._connected,
            reason=reason,
        )

    def _notify(self, snap: StoreSnapshot) -> None:
        with self._lock:
            observers = list(self._observers)
        self._publish(snap)
        for observer in observers:
            try:
                observer(snap)
            except Exception:
                logger.exception("[STORE] Observador falló procesando %s", snap.reason)

    def _publish(self, snap: StoreSnapshot) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or _running_loop() is loop:
            self._changes.publish(snap)
        else:
            loop.call_soon_threadsafe(self._changes.publish, snap)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
