"""
test_broadcast.py
=================
Tests unitarios de la difusión interna (fan-out).
Cubre: replay del último valor, buffer acotado con descarte del más
antiguo, orden de entrega y cierre de suscripciones.

Ejecutar:
    pytest tests/test_broadcast.py -v
"""

import pytest

from wvc.broadcast import Broadcast


class TestReplay:

    @pytest.mark.asyncio
    async def test_suscriptor_tardio_recibe_el_ultimo(self):
        """TC-BC-01: Un suscriptor tardío recibe el valor más reciente."""
        bc = Broadcast()
        bc.publish(1)
        bc.publish(2)
        sub = bc.subscribe()
        assert await sub.get() == 2

    @pytest.mark.asyncio
    async def test_replay_no_incluye_historial(self):
        """TC-BC-02: Solo se reenvía el último, nunca el historial."""
        bc = Broadcast()
        for i in range(5):
            bc.publish(i)
        sub = bc.subscribe()
        assert sub.pending() == 1

    def test_sin_publicaciones_no_hay_replay(self):
        """TC-BC-03: Sin valor previo la suscripción arranca vacía."""
        sub = Broadcast().subscribe()
        assert sub.get_nowait() is None

    def test_replay_desactivado(self):
        """TC-BC-04: replay=False no reenvía el último valor."""
        bc = Broadcast(replay=False)
        bc.publish("x")
        assert bc.subscribe().pending() == 0


class TestBufferAcotado:

    @pytest.mark.asyncio
    async def test_descarta_el_mas_antiguo(self):
        """TC-BC-05: Con el buffer lleno se descarta el elemento más antiguo."""
        bc = Broadcast(buffer_size=3)
        sub = bc.subscribe()
        for i in range(5):
            bc.publish(i)
        recibidos = [await sub.get() for _ in range(3)]
        assert recibidos == [2, 3, 4]
        assert sub.dropped == 2

    @pytest.mark.asyncio
    async def test_entrega_en_orden_de_llegada(self):
        """TC-BC-06: Los elementos llegan en el orden publicado."""
        bc = Broadcast(buffer_size=10)
        sub = bc.subscribe()
        for i in range(4):
            bc.publish(i)
        assert [await sub.get() for _ in range(4)] == [0, 1, 2, 3]

    def test_buffer_invalido(self):
        """TC-BC-07: buffer_size < 1 lanza ValueError."""
        with pytest.raises(ValueError):
            Broadcast(buffer_size=0)


class TestCierre:

    @pytest.mark.asyncio
    async def test_close_termina_la_iteracion(self):
        """TC-BC-08: Tras close() el `async for` termina."""
        bc = Broadcast()
        sub = bc.subscribe()
        bc.publish("a")
        bc.close()
        recibidos = [item async for item in sub]
        assert recibidos == ["a"]
        assert sub.closed is True

    def test_close_de_suscripcion_la_desvincula(self):
        """TC-BC-09: Una suscripción cerrada deja de recibir."""
        bc = Broadcast()
        sub = bc.subscribe()
        sub.close()
        assert bc.subscriber_count == 0
