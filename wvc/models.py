"""
models.py
=========
Capa de Dominio — WVC Controlador de Válvula de Agua
Tipos inmutables compartidos por todas las capas y taxonomía de errores.

Tipos:
    SensorReading   → Lectura del sensor de fugas
    Alert           → Alerta "pegajosa" mientras se detecta agua
    CommandRequest  → Orden abrir/cerrar en vuelo
    CommandOutcome  → Resultado único de cada orden
    ControlStatus   → Único estado visible para la presentación
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


# ── Excepciones de dominio ───────────────────────────────────────────────────

class WVCError(Exception):
    """Base de todos los errores del controlador."""
    pass


class ConnectError(WVCError):
    """Fallo de red o autenticación al establecer el transporte."""
    pass


class CommandError(WVCError):
    """Base de los fallos de una orden a la válvula."""
    pass


class CommandTimeout(CommandError):
    """No llegó el ACK dentro del tiempo límite."""

    def __init__(self, message: str = "timeout") -> None:
        super().__init__(message)


class CommandTransportError(CommandError):
    """El envío falló o el transporte lanzó una excepción."""
    pass


class MalformedMessage(WVCError):
    """Telemetría imposible de interpretar. Se descarta en la ingesta."""
    pass


class ConfigError(WVCError, ValueError):
    """Configuración externa inválida."""
    pass


# ── Lecturas y alertas ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class SensorReading:
    level:       int
    triggered:   bool
    observed_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.level < 0:
            raise ValueError(f"Nivel negativo no permitido: {self.level}")

    def is_leak(self, threshold: int) -> bool:
        """Predicado de alerta: nivel >= umbral o sensor disparado."""
        return self.triggered or self.level >= threshold

    def to_dict(self) -> dict:
        return {
            "reading":     self.level,
            "triggered":   self.triggered,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class Alert:
    reading:   SensorReading
    raised_at: datetime = field(default_factory=datetime.now)

    @property
    def observed_at(self) -> datetime:
        return self.reading.observed_at


# ── Órdenes a la válvula ─────────────────────────────────────────────────────

class CommandKind(str, Enum):
    OPEN  = "open"
    CLOSE = "close"

    @property
    def payload(self) -> str:
        return self.value

    @property
    def expected_ack(self) -> str:
        return "opened" if self is CommandKind.OPEN else "closed"

    @property
    def http_path(self) -> str:
        return f"/{self.value}"


@dataclass(frozen=True)
class CommandRequest:
    kind:      CommandKind
    issued_at: datetime = field(default_factory=datetime.now)
    origin:    str = "operator"


@dataclass(frozen=True)
class CommandOutcome:
    kind:   CommandKind
    ok:     bool
    reason: Optional[str] = None
    error:  Optional[CommandError] = field(default=None, compare=False)

    @classmethod
    def success(cls, kind: CommandKind) -> "CommandOutcome":
        return cls(kind=kind, ok=True)

    @classmethod
    def failure(cls, kind: CommandKind, error: Exception) -> "CommandOutcome":
        if not isinstance(error, CommandError):
            error = CommandTransportError(str(error) or type(error).__name__)
        return cls(kind=kind, ok=False, reason=str(error), error=error)

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, CommandTimeout)


# ── Estado de control (visible para la presentación) ─────────────────────────

class StatusKind(str, Enum):
    READY     = "READY"
    OPENING   = "OPENING"
    CLOSING   = "CLOSING"
    ALERTED   = "ALERTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED    = "FAILED"


@dataclass(frozen=True)
class ControlStatus:
    kind:    StatusKind
    alert:   Optional[Alert] = None
    message: Optional[str] = None
    since:   datetime = field(default_factory=datetime.now, compare=False)

    @classmethod
    def ready(cls) -> "ControlStatus":
        return cls(StatusKind.READY)

    @classmethod
    def pending(cls, kind: CommandKind) -> "ControlStatus":
        if kind is CommandKind.OPEN:
            return cls(StatusKind.OPENING)
        return cls(StatusKind.CLOSING)

    @classmethod
    def alerted(cls, alert: Alert) -> "ControlStatus":
        return cls(StatusKind.ALERTED, alert=alert)

    @classmethod
    def succeeded(cls, message: str) -> "ControlStatus":
        return cls(StatusKind.SUCCEEDED, message=message)

    @classmethod
    def failed(cls, message: str) -> "ControlStatus":
        return cls(StatusKind.FAILED, message=message)

    @property
    def is_transient(self) -> bool:
        return self.kind in (StatusKind.SUCCEEDED, StatusKind.FAILED)

    @property
    def is_busy(self) -> bool:
        return self.kind in (StatusKind.OPENING, StatusKind.CLOSING)
