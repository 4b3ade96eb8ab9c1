"""
codec.py
========
Capa de Infraestructura — WVC Controlador de Válvula de Agua
Decodificación de la telemetría del sensor.

Formatos aceptados en la frontera de red:
    JSON   → {"reading": 1200, "triggered": false}
    FLAG   → "true" / "false"
    AUTO   → cualquiera de los anteriores, o un entero suelto ("1200")
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from wvc.models import MalformedMessage, SensorReading

logger = logging.getLogger(__name__)


class TelemetryCodec:
    """Interfaz: convierte un payload crudo en SensorReading."""

    name: str = "base"

    def decode(self, payload: str, observed_at: Optional[datetime] = None) -> SensorReading:
        raise NotImplementedError


class JsonReadingCodec(TelemetryCodec):

    name = "json"

    def decode(self, payload, observed_at=None):
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise MalformedMessage(f"JSON inválido: {payload!r}") from exc
        return reading_from_object(data, observed_at)


class FlagCodec(TelemetryCodec):

    name = "flag"

    def decode(self, payload, observed_at=None):
        flag = _parse_flag(payload)
        if flag is None:
            raise MalformedMessage(f"Se esperaba 'true'/'false': {payload!r}")
        return _build(0, flag, observed_at)


class AutoCodec(TelemetryCodec):
    """Detecta el formato por el contenido del payload."""

    name = "auto"

    def decode(self, payload, observed_at=None):
        flag = _parse_flag(payload)
        if flag is not None:
            return _build(0, flag, observed_at)
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise MalformedMessage(f"Payload no reconocido: {payload!r}") from exc
        return reading_from_object(data, observed_at)


CODECS: dict[str, type[TelemetryCodec]] = {
    JsonReadingCodec.name: JsonReadingCodec,
    FlagCodec.name:        FlagCodec,
    AutoCodec.name:        AutoCodec,
}


def get_codec(name: str) -> TelemetryCodec:
    try:
        return CODECS[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Codec desconocido: {name!r}. Disponibles: {sorted(CODECS)}"
        ) from None


def reading_from_object(data: object, observed_at: Optional[datetime] = None) -> SensorReading:
    # bool es subclase de int: se descarta antes de tratarlo como nivel
    if isinstance(data, bool):
        return _build(0, data, observed_at)
    if isinstance(data, int):
        return _build(data, False, observed_at)
    if not isinstance(data, dict):
        raise MalformedMessage(f"Tipo de payload no soportado: {type(data).__name__}")

    level = data.get("reading", 0)
    triggered = data.get("triggered", False)
    if isinstance(level, bool) or not isinstance(level, int):
        raise MalformedMessage(f"'reading' debe ser entero: {level!r}")
    if isinstance(triggered, str):
        triggered = _parse_flag(triggered)
    if not isinstance(triggered, bool):
        raise MalformedMessage(f"'triggered' debe ser booleano: {data.get('triggered')!r}")
    return _build(level, triggered, observed_at)


def _parse_flag(payload: object) -> Optional[bool]:
    if not isinstance(payload, str):
        return None
    text = payload.strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    return None


def _build(level: int, triggered: bool, observed_at: Optional[datetime]) -> SensorReading:
    if level < 0:
        raise MalformedMessage(f"Nivel negativo: {level}")
    return SensorReading(
        level=level,
        triggered=triggered,
        observed_at=observed_at or datetime.now(),
    )
