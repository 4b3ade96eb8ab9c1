"""
wvc/
====
Paquete WVC — Controlador remoto de corte de agua.

Arquitectura (Clean Architecture):
    ┌─────────────────────────────────────────────────────┐
    │  ValveController        ← Caso de Uso / Entrada     │
    │  ┌───────────────────────────────────────────────┐  │
    │  │  AlertStore   StatusMachine                   │  │  Dominio
    │  │  SensorIngestionChannel  ValveCommandChannel  │  │  Casos de uso
    │  │  ┌─────────────────────────────────────────┐  │  │
    │  │  │  Transport (MQTT | HTTP/SSE | Loopback) │  │  │  Infraestructura
    │  │  └─────────────────────────────────────────┘  │  │
    │  └───────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────┘

Módulos:
    models               → Tipos del dominio y errores
    codec                → Decodificación de la telemetría
    broadcast            → Fan-out con replay del último valor
    alert_store          → Alerta y orden en vuelo (estado compartido)
    status_machine       → Máquina de estados del ControlStatus
    transport            → Conexión + reconexión con retardo fijo
    mqtt_comm            → Transporte sobre broker MQTT
    http_stream          → Transporte SSE + HTTP POST
    simulator            → Transporte en memoria con válvula simulada
    sensor_channel       → Ingesta de lecturas y alertas
    valve_channel        → Orden + espera del ACK con timeout
    control_orchestrator → Orquestador del estado visible
    config               → Configuración externa (WVC_*)

Uso rápido:
    from wvc import WVCSettings, create_wvc_system

    ctrl = create_wvc_system(WVCSettings.from_env(".env"))
    await ctrl.start()
    ctrl.request_close()
"""

from __future__ import annotations

from typing import Optional

# ── Dominio ──────────────────────────────────────────────────────────────────
from wvc.models import (
    Alert,
    CommandError,
    CommandKind,
    CommandOutcome,
    CommandRequest,
    CommandTimeout,
    CommandTransportError,
    ConfigError,
    ConnectError,
    ControlStatus,
    MalformedMessage,
    SensorReading,
    StatusKind,
    WVCError,
)
from wvc.alert_store import AlertStore, StoreSnapshot
from wvc.status_machine import (
    StatusMachine,
    InvalidStateTransitionError,
    VALID_TRANSITIONS,
)

# ── Casos de uso ─────────────────────────────────────────────────────────────
from wvc.sensor_channel import SensorIngestionChannel
from wvc.valve_channel import ValveCommandChannel, PendingAckTable
from wvc.control_orchestrator import ValveController, ControllerBusyError, ControllerClosedError

# ── Infraestructura ──────────────────────────────────────────────────────────
from wvc.broadcast import Broadcast, Subscription
from wvc.codec import get_codec
from wvc.config import WVCSettings
from wvc.transport import InboundMessage, Transport, build_transport


# ── API pública del paquete ──────────────────────────────────────────────────
__all__ = [
    # Dominio
    "Alert",
    "CommandKind",
    "CommandOutcome",
    "CommandRequest",
    "ControlStatus",
    "SensorReading",
    "StatusKind",
    "AlertStore",
    "StoreSnapshot",
    "StatusMachine",
    "VALID_TRANSITIONS",
    # Errores
    "WVCError",
    "ConnectError",
    "CommandError",
    "CommandTimeout",
    "CommandTransportError",
    "MalformedMessage",
    "ConfigError",
    "InvalidStateTransitionError",
    "ControllerBusyError",
    "ControllerClosedError",
    # Casos de uso
    "SensorIngestionChannel",
    "ValveCommandChannel",
    "PendingAckTable",
    "ValveController",
    # Infraestructura
    "Broadcast",
    "Subscription",
    "InboundMessage",
    "Transport",
    "WVCSettings",
    "build_transport",
    "get_codec",
    "create_wvc_system",
]

__version__ = "1.0.0"
__author__  = "Equipo Ingeniería WVC"


# ── Factory helper ───────────────────────────────────────────────────────────

def create_wvc_system(
    settings: Optional[WVCSettings] = None,
    transport: Optional[Transport] = None,
    store: Optional[AlertStore] = None,
) -> ValveController:
    """
    Factory que construye el controlador completo con dependencias conectadas.

    Args:
        settings:  Configuración; por defecto WVCSettings().
        transport: Transporte ya construido (tests, simulador).
        store:     AlertStore compartido (uno por sesión de actuador).

    Returns:
        ValveController listo para start().
    """
    settings  = settings or WVCSettings()
    transport = transport or build_transport(settings)
    store     = store or AlertStore()
    ingestion = SensorIngestionChannel(
        transport,
        store,
        codec=get_codec(settings.telemetry_codec),
        threshold=settings.alert_threshold,
    )
    valve = ValveCommandChannel(transport, timeout_ms=settings.command_timeout_ms)
    return ValveController(
        store,
        valve,
        ingestion,
        auto_reset_ms=settings.auto_reset_ms,
        auto_close_on_alert=settings.auto_close_on_alert,
    )
