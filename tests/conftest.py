"""
conftest.py
===========
Fixtures compartidas por las suites del controlador WVC.
"""

import asyncio

import pytest

from wvc.alert_store import AlertStore
from wvc.simulator import LoopbackTransport


async def _wait_until(predicate, timeout: float = 1.0, step: float = 0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("La condición esperada no se alcanzó a tiempo")
        await asyncio.sleep(step)


@pytest.fixture
def wait_until():
    """Espera activa (con timeout) a que una condición sea cierta."""
    return _wait_until


@pytest.fixture
def store():
    """AlertStore limpio, sin alerta ni orden en vuelo."""
    return AlertStore()


@pytest.fixture
def loopback():
    """Transporte en memoria con ACK por topic y delays cortos."""
    return LoopbackTransport(
        telemetry_channel="feeds/water-sensor",
        ack_topic="feeds/valve-ack",
        reconnect_delay_ms=20,
        ack_delay_ms=10,
    )
