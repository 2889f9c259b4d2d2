from fastapi import APIRouter

from ..schemas import CheckoutValidationIn, CheckoutValidationOut
from ..services.cart_gate import CartSnapshot, evaluate

router = APIRouter()


@router.post("/validate-checkout", response_model=CheckoutValidationOut)
def validate_checkout(payload: CheckoutValidationIn):
    cart = CartSnapshot.from_input(payload.model_dump(by_alias=True))
    return {"errors": [violation.to_dict() for violation in evaluate(cart)]}
