"""
Ejecuta el controlador sin interfaz: registra cada cambio de estado.

    python -m wvc --env-file .env
    python -m wvc --simulate        (válvula y broker en memoria)
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from wvc import WVCSettings, create_wvc_system
from wvc.simulator import LoopbackTransport

logger = logging.getLogger("wvc")


async def run(settings: WVCSettings, simulate: bool) -> None:
    transport = None
    if simulate:
        transport = LoopbackTransport(
            telemetry_channel=settings.sensor_topic,
            ack_topic=settings.ack_topic,
            reconnect_delay_ms=settings.reconnect_delay_ms,
        )
    ctrl = create_wvc_system(settings, transport=transport)
    updates = ctrl.subscribe()
    await ctrl.start()
    try:
        async for status in updates:
            logger.info(
                "Estado: %s %s",
                status.kind.value,
                status.message or (status.alert.observed_at.isoformat() if status.alert else ""),
            )
    finally:
        await ctrl.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(prog="wvc", description="Controlador remoto de corte de agua")
    parser.add_argument("--env-file", default=".env", help="Fichero .env con variables WVC_*")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--simulate", action="store_true", help="Usar transporte en memoria")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    settings = WVCSettings.from_env(args.env_file)
    try:
        asyncio.run(run(settings, args.simulate))
    except KeyboardInterrupt:
        logger.info("Interrumpido por el operador")


if __name__ == "__main__":
    main()
