"""Run one reconciliation cycle from the command line.

Usage:
    PYTHONPATH=src python scripts/run_once.py

Takes the same single-flight lock as the API trigger and the Celery beat
task, so it is safe to run while those are live. Prints the RunResult JSON
and exits non-zero when the run did not complete.
"""

import asyncio
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s - %(message)s")
logger = logging.getLogger("run_once")
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)


async def main() -> int:
    from equitybridge.container import Container, close_clients

    container = Container()
    try:
        result = await container.runner().run()
    finally:
        await close_clients(container)

    print(result.model_dump_json(indent=2))
    if not result.success:
        logger.error("Run did not complete: %s", result.error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
