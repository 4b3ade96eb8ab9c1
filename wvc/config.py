"""
config.py
=========
Configuración externa del controlador.

Todas las entradas (endpoint, credenciales, umbral, tiempos) llegan desde
variables de entorno `WVC_*` o desde un fichero `.env`; ninguna está fija
en el núcleo.

Variables:
    WVC_TRANSPORT            mqtt | http
    WVC_BROKER_URL           ssl://io.adafruit.com:8883
    WVC_USERNAME / WVC_KEY   credenciales del broker o HTTP basic
    WVC_SENSOR_TOPIC         <username>/feeds/water-sensor
    WVC_CONTROL_TOPIC        <username>/feeds/valve-control
    WVC_ACK_TOPIC            <username>/feeds/valve-ack
    WVC_HTTP_BASE_URL        http://192.168.4.1
    WVC_EVENTS_PATH          /events
    WVC_SENSOR_EVENT         sensor
    WVC_TELEMETRY_CODEC      auto | json | flag
    WVC_ALERT_THRESHOLD      1000
    WVC_COMMAND_TIMEOUT_MS   5000
    WVC_RECONNECT_DELAY_MS   5000
    WVC_AUTO_RESET_MS        3000
    WVC_CONNECT_TIMEOUT_S    10
    WVC_KEEPALIVE_S          300
    WVC_AUTO_CLOSE           false
    WVC_CLIENT_ID_PREFIX     WaterValveController
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

from dotenv import dotenv_values

from wvc.codec import CODECS
from wvc.models import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "WVC_"
TRANSPORTS = ("mqtt", "http")


@dataclass(frozen=True)
class WVCSettings:
    transport:           str = "mqtt"
    broker_url:          str = "ssl://io.adafruit.com:8883"
    username:            str = ""
    key:                 str = ""
    sensor_topic:        str = ""
    control_topic:       str = ""
    ack_topic:           str = ""
    http_base_url:       str = "http://192.168.4.1"
    events_path:         str = "/events"
    sensor_event:        str = "sensor"
    telemetry_codec:     str = "auto"
    alert_threshold:     int = 1000
    command_timeout_ms:  int = 5000
    reconnect_delay_ms:  int = 5000
    auto_reset_ms:       int = 3000
    connect_timeout_s:   float = 10.0
    keepalive_s:         int = 300
    auto_close_on_alert: bool = False
    client_id_prefix:    str = "WaterValveController"

    def __post_init__(self) -> None:
        # Topics estilo Adafruit IO derivados del usuario si no se indican
        feeds = f"{self.username}/feeds" if self.username else "feeds"
        if not self.sensor_topic:
            object.__setattr__(self, "sensor_topic", f"{feeds}/water-sensor")
        if not self.control_topic:
            object.__setattr__(self, "control_topic", f"{feeds}/valve-control")
        if not self.ack_topic:
            object.__setattr__(self, "ack_topic", f"{feeds}/valve-ack")
        self.validate()

    def validate(self) -> None:
        if self.transport not in TRANSPORTS:
            raise ConfigError(f"Transporte desconocido: {self.transport!r}. Usar {TRANSPORTS}")
        if self.telemetry_codec not in CODECS:
            raise ConfigError(f"Codec desconocido: {self.telemetry_codec!r}")
        if self.alert_threshold < 0:
            raise ConfigError("alert_threshold debe ser >= 0")
        for name in ("command_timeout_ms", "reconnect_delay_ms", "auto_reset_ms"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} debe ser > 0")
        if self.connect_timeout_s <= 0:
            raise ConfigError("connect_timeout_s debe ser > 0")

    def with_overrides(self, **changes) -> "WVCSettings":
        return replace(self, **changes)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "WVCSettings":
        """
        Construye la configuración desde el entorno.

        Args:
            env_file: Fichero .env opcional (el entorno del proceso tiene prioridad).
            environ:  Mapping explícito; si se indica se ignoran .env y os.environ.
        """
        if environ is None:
            values: dict = {}
            if env_file:
                values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
            values.update(os.environ)
        else:
            values = dict(environ)

        kwargs = {}
        for f in fields(cls):
            raw = values.get(ENV_PREFIX + f.name.upper())
            if raw is None and f.name == "auto_close_on_alert":
                raw = values.get(ENV_PREFIX + "AUTO_CLOSE")
            if raw is None:
                continue
            kwargs[f.name] = _coerce(f.name, f.type, raw)

        settings = cls(**kwargs)
        logger.info(
            "[CONFIG] Transporte=%s umbral=%s timeout=%sms reconexión=%sms",
            settings.transport,
            settings.alert_threshold,
            settings.command_timeout_ms,
            settings.reconnect_delay_ms,
        )
        return settings


def _coerce(name: str, type_name: str, raw: str):
    raw = raw.strip()
    try:
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()} no es numérico: {raw!r}") from exc
    if type_name == "bool":
        lowered = raw.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
        raise ConfigError(f"{ENV_PREFIX}{name.upper()} no es booleano: {raw!r}")
    return raw
