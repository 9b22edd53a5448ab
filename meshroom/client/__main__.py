"""
用法::

    python -m meshroom.client [room_id]
"""
import asyncio
import sys

from meshroom.client.runner import run_client
from meshroom.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger("meshroom.client")

if __name__ == "__main__":
    try:
        asyncio.run(run_client(sys.argv[1] if len(sys.argv) > 1 else None))
    except KeyboardInterrupt:
        logger.info("客户端已停止")
