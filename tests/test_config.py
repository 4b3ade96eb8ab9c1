"""
test_config.py
==============
Tests de la configuración externa WVCSettings.
Cubre: valores de referencia, topics derivados, lectura de WVC_*,
conversión de tipos, fichero .env y validación.

Ejecutar:
    pytest tests/test_config.py -v
"""

import pytest

from wvc.config import WVCSettings
from wvc.models import ConfigError


# ══════════════════════════════════════════════════════════════════
#  SUITE 1 — Valores de referencia
# ══════════════════════════════════════════════════════════════════

class TestValoresPorDefecto:

    def test_constantes_de_referencia(self):
        """TC-CFG-01: Umbral 1000, timeout 5000ms, reconexión 5000ms, reset 3000ms."""
        s = WVCSettings()
        assert s.alert_threshold == 1000
        assert s.command_timeout_ms == 5000
        assert s.reconnect_delay_ms == 5000
        assert s.auto_reset_ms == 3000

    def test_broker_por_defecto(self):
        """TC-CFG-02: El transporte por defecto es MQTT sobre TLS."""
        s = WVCSettings()
        assert s.transport == "mqtt"
        assert s.broker_url == "ssl://io.adafruit.com:8883"
        assert s.auto_close_on_alert is False

    def test_topics_derivados_del_usuario(self):
        """TC-CFG-03: Los topics se derivan de <usuario>/feeds/..."""
        s = WVCSettings(username="ana")
        assert s.sensor_topic == "ana/feeds/water-sensor"
        assert s.control_topic == "ana/feeds/valve-control"
        assert s.ack_topic == "ana/feeds/valve-ack"

    def test_topics_sin_usuario(self):
        """TC-CFG-04: Sin usuario los topics quedan bajo feeds/."""
        assert WVCSettings().sensor_topic == "feeds/water-sensor"

    def test_topic_explicito_se_respeta(self):
        """TC-CFG-05: Un topic indicado no se sobrescribe."""
        s = WVCSettings(username="ana", ack_topic="otro/ack")
        assert s.ack_topic == "otro/ack"
        assert s.control_topic == "ana/feeds/valve-control"


# ══════════════════════════════════════════════════════════════════
#  SUITE 2 — Variables de entorno
# ══════════════════════════════════════════════════════════════════

class TestFromEnv:

    def test_lee_variables_wvc(self):
        """TC-CFG-06: from_env() lee y convierte WVC_*."""
        s = WVCSettings.from_env(environ={
            "WVC_TRANSPORT": "http",
            "WVC_ALERT_THRESHOLD": "800",
            "WVC_CONNECT_TIMEOUT_S": "2.5",
            "WVC_AUTO_CLOSE_ON_ALERT": "true",
        })
        assert s.transport == "http"
        assert s.alert_threshold == 800
        assert s.connect_timeout_s == 2.5
        assert s.auto_close_on_alert is True

    def test_alias_auto_close(self):
        """TC-CFG-07: WVC_AUTO_CLOSE es alias de auto_close_on_alert."""
        s = WVCSettings.from_env(environ={"WVC_AUTO_CLOSE": "yes"})
        assert s.auto_close_on_alert is True

    def test_ignora_variables_ajenas(self):
        """TC-CFG-08: Variables sin prefijo WVC_ no afectan."""
        s = WVCSettings.from_env(environ={"ALERT_THRESHOLD": "5"})
        assert s.alert_threshold == 1000

    def test_entero_invalido(self):
        """TC-CFG-09: Un entero no numérico lanza ConfigError."""
        with pytest.raises(ConfigError):
            WVCSettings.from_env(environ={"WVC_COMMAND_TIMEOUT_MS": "cinco"})

    def test_booleano_invalido(self):
        """TC-CFG-10: Un booleano no reconocido lanza ConfigError."""
        with pytest.raises(ConfigError):
            WVCSettings.from_env(environ={"WVC_AUTO_CLOSE": "quizás"})

    def test_fichero_env(self, tmp_path, monkeypatch):
        """TC-CFG-11: El fichero .env se lee y el entorno tiene prioridad."""
        monkeypatch.delenv("WVC_USERNAME", raising=False)
        monkeypatch.setenv("WVC_ALERT_THRESHOLD", "1500")
        env = tmp_path / ".env"
        env.write_text("WVC_USERNAME=luis\nWVC_ALERT_THRESHOLD=900\n", encoding="utf-8")

        s = WVCSettings.from_env(str(env))
        assert s.username == "luis"
        assert s.sensor_topic == "luis/feeds/water-sensor"
        assert s.alert_threshold == 1500


# ══════════════════════════════════════════════════════════════════
#  SUITE 3 — Validación
# ══════════════════════════════════════════════════════════════════

class TestValidacion:

    @pytest.mark.parametrize("changes", [
        {"transport": "bluetooth"},
        {"telemetry_codec": "xml"},
        {"alert_threshold": -1},
        {"command_timeout_ms": 0},
        {"reconnect_delay_ms": -5},
        {"connect_timeout_s": 0},
    ])
    def test_valores_invalidos(self, changes):
        """TC-CFG-12: Valores fuera de rango lanzan ConfigError."""
        with pytest.raises(ConfigError):
            WVCSettings(**changes)

    def test_config_error_es_value_error(self):
        """TC-CFG-13: ConfigError hereda de ValueError."""
        with pytest.raises(ValueError):
            WVCSettings(transport="?")

    def test_with_overrides_valida(self):
        """TC-CFG-14: with_overrides() devuelve una copia validada."""
        base = WVCSettings()
        s = base.with_overrides(alert_threshold=10)
        assert s.alert_threshold == 10
        assert base.alert_threshold == 1000
        with pytest.raises(ConfigError):
            base.with_overrides(auto_reset_ms=0)
