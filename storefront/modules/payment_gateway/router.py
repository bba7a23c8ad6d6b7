"""Payment API routers.

Public endpoints (mounted under the API prefix):
- GET  /payment-config          active mode and selectable methods
- POST /checkout                open a payment and create the order
- GET  /payment-instruction     order status view polled by the storefront
- POST /webhook/midtrans        Midtrans HTTP notification
- POST /webhook/duitku          Duitku callback

Admin endpoints live under /admin/payments. Authentication is applied by the
hosting application.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_session
from storefront.modules.payment_gateway.interface import (
    CustomerDetails,
    GatewayRejectedError,
    InvalidSignatureError,
    PaymentConfigurationError,
    PaymentItem,
)
from storefront.modules.payment_gateway.schemas import (
    ActivateGatewayResponse,
    CheckoutRequest,
    CheckoutResponse,
    GatewayConfigResponse,
    GatewayConfigSave,
    ManualMethodAdminResponse,
    ManualMethodResponse,
    ManualMethodSave,
    ManualMethodToggle,
    OrderStatusResponse,
    OrderStatusUpdate,
    PaymentConfigResponse,
    PaymentInstructionResponse,
    PaymentModeResponse,
    PaymentModeUpdate,
    WebhookAck,
)
from storefront.modules.payment_gateway.service import (
    CheckoutService,
    GatewayAdminService,
    PaymentConfigService,
    PaymentInstructionService,
    WebhookService,
)

logger = logging.getLogger(__name__)

# Public router for checkout, status polling and gateway notifications
payment_router = APIRouter(tags=["Payments"])

# Admin router for the payment back office
admin_router = APIRouter(prefix="/admin/payments", tags=["Payment Admin"])


# ==================== Public Endpoints ====================

@payment_router.get("/payment-config", response_model=PaymentConfigResponse)
async def get_payment_config(
    session: AsyncSession = Depends(get_session),
):
    """Get the active payment mode and the methods checkout should offer."""
    service = PaymentConfigService(session)
    return await service.get_public_config()


@payment_router.post("/checkout", response_model=CheckoutResponse)
async def checkout(
    data: CheckoutRequest,
    session: AsyncSession = Depends(get_session),
):
    """Open a payment for the given items and create the order.

    Returns 503 when the payment setup needs an admin and 502 when the
    gateway refused the charge. No order is created in either case.
    """
    service = CheckoutService(session)
    try:
        result = await service.checkout(
            items=[
                PaymentItem(id=i.id, price=i.price, quantity=i.quantity, name=i.name)
                for i in data.items
            ],
            customer=CustomerDetails(
                email=data.customer_email,
                first_name=data.customer_name,
                phone=data.customer_phone,
            ),
            method_code=data.payment_method,
            discount_amount=data.discount_amount,
            promo_code=data.promo_code,
            user_id=data.user_id,
            manual_method_id=data.manual_method_id,
        )
    except PaymentConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )
    except GatewayRejectedError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    await session.commit()

    payment = result.payment
    return CheckoutResponse(
        mode=payment.mode,
        order_id=result.order.id,
        order_code=result.order.order_code,
        payment_status=result.order.payment_status,
        gateway_name=payment.gateway_name,
        payment_type=payment.payment_type,
        payment_code=payment.payment_code,
        qr_url=payment.qr_url,
        redirect_url=payment.redirect_url,
        token=payment.token,
        expiry_time=payment.expiry_time,
        manual_methods=(
            [ManualMethodResponse(**m.to_dict()) for m in payment.manual_methods]
            if payment.manual_methods is not None
            else None
        ),
    )


@payment_router.get(
    "/payment-instruction",
    response_model=PaymentInstructionResponse,
    response_model_by_alias=True,
)
async def get_payment_instruction(
    order_id: Optional[str] = Query(None, alias="orderId"),
    session: AsyncSession = Depends(get_session),
):
    """Get the payment status view for one order."""
    if not order_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="orderId parameter required",
        )

    service = PaymentInstructionService(session)
    view = await service.get_instruction(order_id)
    if view is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        )
    return PaymentInstructionResponse.model_validate(view)


async def _handle_notification(handler, payload: dict, session: AsyncSession) -> WebhookAck:
    try:
        await handler(payload)
    except InvalidSignatureError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except PaymentConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    await session.commit()
    return WebhookAck()


@payment_router.post("/webhook/midtrans", response_model=WebhookAck)
async def midtrans_webhook(
    payload: dict,
    session: AsyncSession = Depends(get_session),
):
    """Handle a Midtrans HTTP notification (signature_key in the body)."""
    service = WebhookService(session)
    return await _handle_notification(service.handle_midtrans, payload, session)


@payment_router.post("/webhook/duitku", response_model=WebhookAck)
async def duitku_webhook(
    payload: dict,
    session: AsyncSession = Depends(get_session),
):
    """Handle a Duitku callback (signature in the body)."""
    service = WebhookService(session)
    return await _handle_notification(service.handle_duitku, payload, session)


# ==================== Admin Endpoints ====================

@admin_router.get("/gateways", response_model=list[GatewayConfigResponse])
async def list_gateways(
    session: AsyncSession = Depends(get_session),
):
    """List gateway configurations. Credentials are masked."""
    service = GatewayAdminService(session)
    configs = await service.get_all_gateways()
    return [GatewayConfigResponse.from_config(c) for c in configs]


@admin_router.post("/gateways", response_model=GatewayConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_gateway(
    data: GatewayConfigSave,
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    try:
        config = await service.save_gateway_config(**data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await session.commit()
    return GatewayConfigResponse.from_config(config)


@admin_router.put("/gateways/{config_id}", response_model=GatewayConfigResponse)
async def update_gateway(
    config_id: uuid.UUID,
    data: GatewayConfigSave,
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    try:
        config = await service.save_gateway_config(config_id=config_id, **data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Gateway config {config_id} not found",
        )

    await session.commit()
    return GatewayConfigResponse.from_config(config)


@admin_router.post("/gateways/{config_id}/activate", response_model=ActivateGatewayResponse)
async def activate_gateway(
    config_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Make this gateway the only active one."""
    service = GatewayAdminService(session)
    if not await service.activate_gateway(config_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Gateway config {config_id} not found",
        )

    await session.commit()
    return ActivateGatewayResponse(
        id=config_id,
        is_active=True,
        message="Gateway activated",
    )


@admin_router.get("/mode", response_model=PaymentModeResponse)
async def get_payment_mode(
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    return PaymentModeResponse(mode=await service.get_payment_mode())


@admin_router.put("/mode", response_model=PaymentModeResponse)
async def set_payment_mode(
    data: PaymentModeUpdate,
    session: AsyncSession = Depends(get_session),
):
    """Switch between gateway and manual payments."""
    service = GatewayAdminService(session)
    try:
        settings_row = await service.set_payment_mode(data.mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await session.commit()
    return PaymentModeResponse(mode=settings_row.payment_mode)


@admin_router.get("/manual-methods", response_model=list[ManualMethodAdminResponse])
async def list_manual_methods(
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    return await service.get_manual_methods()


@admin_router.post(
    "/manual-methods",
    response_model=ManualMethodAdminResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual_method(
    data: ManualMethodSave,
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    try:
        method = await service.save_manual_method(**data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await session.commit()
    return method


@admin_router.put("/manual-methods/{method_id}", response_model=ManualMethodAdminResponse)
async def update_manual_method(
    method_id: uuid.UUID,
    data: ManualMethodSave,
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    try:
        method = await service.save_manual_method(method_id=method_id, **data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if method is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Manual payment method {method_id} not found",
        )

    await session.commit()
    return method


@admin_router.patch("/manual-methods/{method_id}", response_model=ManualMethodAdminResponse)
async def toggle_manual_method(
    method_id: uuid.UUID,
    data: ManualMethodToggle,
    session: AsyncSession = Depends(get_session),
):
    """Show or hide a manual method at checkout."""
    service = GatewayAdminService(session)
    method = await service.toggle_manual_method(method_id, data.is_active)
    if method is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Manual payment method {method_id} not found",
        )

    await session.commit()
    return method


@admin_router.delete("/manual-methods/{method_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_manual_method(
    method_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    service = GatewayAdminService(session)
    if not await service.delete_manual_method(method_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Manual payment method {method_id} not found",
        )
    await session.commit()


@admin_router.put("/orders/{order_id}/status", response_model=OrderStatusResponse)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    session: AsyncSession = Depends(get_session),
):
    """Set an order's payment status by hand (manual reconciliation)."""
    service = GatewayAdminService(session)
    try:
        order = await service.update_order_status(order_id, data.status)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {order_id} not found",
        )

    await session.commit()
    return order
