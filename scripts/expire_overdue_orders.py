"""Expire pending orders whose payment deadline has passed.

Runs once and exits; schedule it with cron, a systemd timer or whatever the
deployment uses.

Usage:
    python -m scripts.expire_overdue_orders
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from storefront.core.database import async_session_maker
from storefront.core.logging import setup_logging
from storefront.modules.payment_gateway.repository import OrderRepository

logger = logging.getLogger("storefront.scripts.expire_overdue_orders")


async def expire_overdue_orders() -> int:
    async with async_session_maker() as session:
        expired = await OrderRepository(session).expire_overdue()
        await session.commit()
    logger.info(f"Expired {expired} overdue orders")
    return expired


if __name__ == "__main__":
    setup_logging(level="INFO", json_format=True)
    asyncio.run(expire_overdue_orders())
