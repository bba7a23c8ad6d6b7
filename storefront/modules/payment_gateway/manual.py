"""Manual payment method provider."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.modules.payment_gateway.interface import ManualMethodSnapshot
from storefront.modules.payment_gateway.models import ManualPaymentMethod

logger = logging.getLogger(__name__)


async def get_manual_payment_methods(session: AsyncSession) -> list[ManualMethodSnapshot]:
    """Return active manual payment methods ordered by sort_order.

    A read failure yields an empty list. Checkout then shows "no methods
    available" instead of failing the order.
    """
    try:
        result = await session.execute(
            select(ManualPaymentMethod)
            .where(ManualPaymentMethod.is_active == True)
            .order_by(ManualPaymentMethod.sort_order)
        )
        methods = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load manual payment methods: {e}")
        return []

    return [ManualMethodSnapshot.from_model(m) for m in methods]
