"""
Cart validation endpoint
"""

from typing import Any
from fastapi import APIRouter, Depends

from boxoffice.api.v1.deps import get_container
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.cart import CartValidateRequest, CartValidationResponse
from boxoffice.services.validation_gate import CartItem

router = APIRouter()


@router.post("/validate", response_model=CartValidationResponse)
async def validate_cart(
    cart_in: CartValidateRequest,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Check requested quantities against live inventory
    """
    items = [CartItem(ticket_type_id=item.ticket_type_id, quantity=item.quantity) for item in cart_in.items]
    validation = await container.validation_gate.validate_cart(items, hold_id=cart_in.hold_id)
    return CartValidationResponse(valid=validation.valid, errors=validation.errors_as_dicts())
