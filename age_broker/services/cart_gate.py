"""Checkout validation for carts holding age-restricted products.

``evaluate`` only reads the cart. It trusts the buyer's durable claim and
never calls back into the broker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Claim:
    namespace: str
    key: str
    value: str


@dataclass(frozen=True)
class CartLine:
    tags: tuple[str, ...] = ()
    product_type: str = ""


@dataclass(frozen=True)
class BuyerIdentity:
    customer_id: Optional[str] = None
    claims: tuple[Claim, ...] = ()


@dataclass(frozen=True)
class CartSnapshot:
    lines: tuple[CartLine, ...] = ()
    buyer: Optional[BuyerIdentity] = None

    @classmethod
    def from_input(cls, payload: dict[str, Any]) -> "CartSnapshot":
        """Build a snapshot from checkout function input (``{"cart": {...}}``)."""
        cart = payload.get("cart") or {}
        lines = []
        for line in cart.get("lines") or []:
            product = ((line or {}).get("merchandise") or {}).get("product") or {}
            lines.append(
                CartLine(
                    tags=tuple(str(tag) for tag in product.get("tags") or []),
                    product_type=str(product.get("productType") or ""),
                )
            )
        buyer = None
        customer = (cart.get("buyerIdentity") or {}).get("customer")
        if customer:
            claims = tuple(
                Claim(
                    namespace=str(item.get("namespace") or ""),
                    key=str(item.get("key") or ""),
                    value=str(item.get("value") or ""),
                )
                for item in customer.get("metafields") or []
                if item
            )
            buyer = BuyerIdentity(customer_id=customer.get("id"), claims=claims)
        return cls(lines=tuple(lines), buyer=buyer)


@dataclass(frozen=True)
class Violation:
    localized_message: str
    target: str = "cart"

    def to_dict(self) -> dict[str, str]:
        return {"localizedMessage": self.localized_message, "target": self.target}


@dataclass(frozen=True)
class GatePolicy:
    restricted_tags: frozenset[str] = field(
        default_factory=lambda: frozenset({"age-restricted", "alcohol", "beer"})
    )
    restricted_types: tuple[str, ...] = ("beer", "alcohol")
    verified_claim: Claim = Claim("audkenni", "age_verified", "true")
    message: str = (
        "Aldursstaðfesting vantar. Þú verður að staðfesta aldur þinn "
        "með Auðkenni til að kaupa áfengi."
    )


DEFAULT_POLICY = GatePolicy()


def line_is_restricted(line: CartLine, policy: GatePolicy = DEFAULT_POLICY) -> bool:
    if any(tag in policy.restricted_tags for tag in line.tags):
        return True
    product_type = line.product_type.lower()
    return any(category in product_type for category in policy.restricted_types)


def requires_verification(cart: CartSnapshot, policy: GatePolicy = DEFAULT_POLICY) -> bool:
    return any(line_is_restricted(line, policy) for line in cart.lines)


def has_verified_claim(cart: CartSnapshot, policy: GatePolicy = DEFAULT_POLICY) -> bool:
    if cart.buyer is None:
        return False
    return any(claim == policy.verified_claim for claim in cart.buyer.claims)


def evaluate(cart: CartSnapshot, policy: GatePolicy = DEFAULT_POLICY) -> list[Violation]:
    if not requires_verification(cart, policy):
        return []
    if has_verified_claim(cart, policy):
        return []
    return [Violation(localized_message=policy.message, target="cart")]
