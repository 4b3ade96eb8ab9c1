"""
test_sensor_channel.py
======================
Tests del canal de ingesta del sensor.
Cubre: alerta por umbral o bandera, lecturas por debajo del umbral,
payloads malformados, orden de entrega, difusión con replay,
re-entregas tras reconexión y estado del enlace.

Ejecutar:
    pytest tests/test_sensor_channel.py -v
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from wvc.codec import FlagCodec
from wvc.sensor_channel import SensorIngestionChannel


@pytest.fixture
def channel(loopback, store):
    """Canal de ingesta con umbral por defecto (1000)."""
    return SensorIngestionChannel(loopback, store)


LEAK = '{"reading": 1200, "triggered": false}'
DRY  = '{"reading": 10, "triggered": false}'


# ══════════════════════════════════════════════════════════════════
#  SUITE 1 — Predicado de alerta
# ══════════════════════════════════════════════════════════════════

class TestAlertas:

    def test_umbral_por_defecto(self, channel):
        """TC-SEN-01: El umbral de referencia es 1000."""
        assert channel.threshold == 1000

    def test_lectura_sobre_umbral_crea_alerta(self, channel, store):
        """TC-SEN-02: reading=1200 crea una alerta con esa lectura."""
        reading = channel.handle_payload(LEAK)
        alert = store.current_alert()
        assert alert is not None
        assert alert.reading is reading
        assert alert.observed_at == reading.observed_at

    def test_triggered_crea_alerta(self, channel, store):
        """TC-SEN-03: triggered=true crea alerta aunque el nivel sea 0."""
        channel.handle_payload('{"reading": 0, "triggered": true}')
        assert store.current_alert() is not None

    def test_lectura_normal_no_crea_alerta(self, channel, store):
        """TC-SEN-04: Una lectura seca no crea alerta."""
        channel.handle_payload(DRY)
        assert store.current_alert() is None

    def test_alerta_es_pegajosa(self, channel, store):
        """TC-SEN-05: Lecturas secas posteriores no borran la alerta."""
        channel.handle_payload(LEAK)
        alert = store.current_alert()
        channel.handle_payload(DRY)
        assert store.current_alert() is alert

    def test_nueva_lectura_reemplaza_alerta(self, channel, store):
        """TC-SEN-06: Una nueva lectura con fuga reemplaza la alerta."""
        channel.handle_payload(LEAK)
        segunda = channel.handle_payload('{"reading": 3000, "triggered": true}')
        assert store.current_alert().reading is segunda

    def test_umbral_configurable(self, loopback, store):
        """TC-SEN-07: El umbral se puede configurar."""
        ch = SensorIngestionChannel(loopback, store, threshold=50)
        ch.handle_payload('{"reading": 60}')
        assert store.current_alert() is not None

    def test_codec_de_bandera(self, loopback, store):
        """TC-SEN-08: Con FlagCodec "true" levanta la alerta."""
        ch = SensorIngestionChannel(loopback, store, codec=FlagCodec())
        ch.handle_payload("true")
        assert store.current_alert().reading.triggered is True


# ══════════════════════════════════════════════════════════════════
#  SUITE 2 — Robustez de la ingesta
# ══════════════════════════════════════════════════════════════════

class TestMalformados:

    def test_payload_malformado_se_descarta(self, channel, store):
        """TC-SEN-09: Un payload inválido devuelve None y se contabiliza."""
        assert channel.handle_payload("###") is None
        assert channel.malformed_count == 1
        assert store.current_alert() is None

    @pytest.mark.asyncio
    async def test_malformado_no_detiene_el_bucle(self, channel, loopback, store, wait_until):
        """TC-SEN-10: Tras un payload inválido se siguen procesando lecturas."""
        await channel.start()
        loopback.inject("{roto")
        loopback.inject(LEAK)
        await wait_until(lambda: store.current_alert() is not None)
        assert channel.malformed_count == 1
        assert loopback.is_connected is True
        await channel.stop()

    def test_callback_que_falla_no_impide_la_alerta(self, channel, store):
        """TC-SEN-11: Un callback con error no impide evaluar la alerta."""
        channel._listeners.append(MagicMock(side_effect=RuntimeError("ui caída")))
        channel.handle_payload(LEAK)
        assert store.current_alert() is not None


# ══════════════════════════════════════════════════════════════════
#  SUITE 3 — Difusión y orden
# ══════════════════════════════════════════════════════════════════

class TestDifusion:

    @pytest.mark.asyncio
    async def test_on_event_en_orden_de_llegada(self, channel, loopback, wait_until):
        """TC-SEN-12: on_event recibe las lecturas en orden."""
        niveles = []
        await channel.start(on_event=lambda r: niveles.append(r.level))
        for level in (1, 2, 3):
            loopback.inject(f'{{"reading": {level}}}')
        await wait_until(lambda: len(niveles) == 3)
        assert niveles == [1, 2, 3]
        await channel.stop()

    @pytest.mark.asyncio
    async def test_suscriptor_tardio_recibe_ultima_lectura(self, channel):
        """TC-SEN-13: subscribe() entrega la última lectura, no el historial."""
        channel.handle_payload('{"reading": 1}')
        channel.handle_payload('{"reading": 2}')
        sub = channel.subscribe()
        reading = await sub.get()
        assert reading.level == 2
        assert sub.pending() == 0

    @pytest.mark.asyncio
    async def test_ignora_otros_canales(self, channel, loopback, wait_until):
        """TC-SEN-14: Mensajes de otros topics no se procesan como lecturas."""
        otros = []
        loopback.add_listener(otros.append)
        await channel.start()
        loopback.inject("opened", channel="feeds/valve-ack")
        await wait_until(lambda: len(otros) == 1)
        assert channel.received_count == 0
        await channel.stop()


# ══════════════════════════════════════════════════════════════════
#  SUITE 4 — Reconexión
# ══════════════════════════════════════════════════════════════════

class TestReconexion:

    @pytest.mark.asyncio
    async def test_reentrega_no_duplica_alerta(self, channel, loopback, store, wait_until):
        """TC-SEN-15: Tras reconectar, el mismo mensaje retenido no duplica la alerta."""
        raised = []
        store.add_observer(lambda snap: raised.append(snap) if snap.reason.startswith("alert") else None)
        await channel.start()
        loopback.inject(LEAK)
        await wait_until(lambda: store.current_alert() is not None)
        alert = store.current_alert()

        loopback.drop()
        await wait_until(lambda: loopback.reconnect_attempts == 1 and loopback.is_connected)
        loopback.inject(LEAK, replay=True)
        loopback.inject(DRY)
        await wait_until(lambda: channel.received_count == 2)

        assert channel.replay_count == 1
        assert store.current_alert() is alert
        assert len(raised) == 1
        await channel.stop()

    @pytest.mark.asyncio
    async def test_estado_del_enlace_en_el_store(self, channel, loopback, store, wait_until):
        """TC-SEN-16: El store refleja conexión y desconexión del transporte."""
        await channel.start()
        assert store.connected is True
        loopback.drop()
        await wait_until(lambda: store.connected is False)
        await wait_until(lambda: store.connected is True)
        await channel.stop()
        assert store.connected is False

    @pytest.mark.asyncio
    async def test_start_con_broker_caido_no_lanza(self, channel, loopback, wait_until):
        """TC-SEN-17: start() con el broker caído reintenta sin lanzar."""
        loopback.fail_connects = 2
        await channel.start()
        assert channel.is_running is True
        await wait_until(lambda: loopback.is_connected)
        await channel.stop()
