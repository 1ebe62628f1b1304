"""
Order endpoints
"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, Header, Response, status
from uuid import UUID

from boxoffice.api.v1.deps import get_container, optional_staff, require_staff
from boxoffice.core.exceptions import AuthenticationError
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.orders import (
    CancelRequest,
    CashConfirmRequest,
    OrderCreate,
    OrderResponse,
    OrderResultResponse,
    RefundRequest
)
from boxoffice.services.order_service import Customer, OrderDetails, PaymentDetails
from boxoffice.services.validation_gate import CartItem

router = APIRouter()

# Result codes that map to something other than 402 Payment Required
_RESULT_STATUS = {
    "INSUFFICIENT_INVENTORY": status.HTTP_409_CONFLICT,
    "UNITS_UNAVAILABLE": status.HTTP_409_CONFLICT,
    "ORDER_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "HOLD_EXPIRED": status.HTTP_410_GONE,
    "HOLD_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_PAYMENT_METHOD": status.HTTP_400_BAD_REQUEST,
    "TICKET_ISSUANCE_FAILURE": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "ORDER_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _order_response(details: OrderDetails) -> OrderResponse:
    response = OrderResponse.model_validate(details.order)
    response.ticket_ids = details.ticket_ids
    response.verification_code = details.verification_code
    return response


@router.post("", response_model=OrderResultResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_in: OrderCreate,
    response: Response,
    idempotency_key: str = Header(..., alias="Idempotency-Key", min_length=1, max_length=100),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Create an order from the cart; replays the stored outcome for a repeated key
    """
    result = await container.orders.create_order(
        customer=Customer(name=order_in.customer.name, email=order_in.customer.email),
        payment=PaymentDetails(method=order_in.payment.method, token=order_in.payment.token),
        items=[CartItem(ticket_type_id=item.ticket_type_id, quantity=item.quantity) for item in order_in.items],
        idempotency_key=idempotency_key,
        hold_id=order_in.hold_id
    )
    if not result.success:
        response.status_code = _RESULT_STATUS.get(result.error_code, status.HTTP_402_PAYMENT_REQUIRED)
    elif result.replayed:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return _order_response(await container.orders.get_order(order_id))


@router.post("/cash/confirm", response_model=OrderResultResponse)
async def confirm_cash_payment(
    confirm_in: CashConfirmRequest,
    staff: str = Depends(require_staff),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Mark a cash order paid and issue its tickets
    """
    return await container.orders.confirm_cash_payment(confirm_in.code, confirmed_by=staff)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    cancel_in: CancelRequest,
    staff: Optional[str] = Depends(optional_staff),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Cancel a pending cash order; staff need no code, customers present theirs
    """
    if staff is not None:
        details = await container.orders.cancel_pending_order(order_id, reason=f"cancelled_by_staff:{staff}")
    elif cancel_in.verification_code:
        details = await container.orders.cancel_pending_order(
            order_id,
            reason="cancelled_by_customer",
            verification_code=cancel_in.verification_code
        )
    else:
        raise AuthenticationError("Staff credentials or the order's verification code required")
    return _order_response(details)


@router.post("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: UUID,
    refund_in: RefundRequest,
    staff: str = Depends(require_staff),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return _order_response(await container.orders.refund_order(order_id, reason=refund_in.reason))
