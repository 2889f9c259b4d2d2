from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class _CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class VerifyStartIn(_CamelModel):
    customer_id: Optional[str] = Field(None, alias="customerId")
    checkout_token: Optional[str] = Field(None, alias="checkoutToken")
    return_url: Optional[str] = Field(None, alias="returnUrl")

    @field_validator("customer_id", "checkout_token", "return_url")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class VerifyStartOut(_CamelModel):
    authorization_url: str = Field(alias="authorizationUrl")


class VerifyCheckIn(_CamelModel):
    verification_id: Optional[str] = Field(None, alias="verificationId")


class VerifyCheckOut(BaseModel):
    verified: bool
    age: Optional[int] = None


class ProductIn(_CamelModel):
    tags: List[str] = []
    product_type: Optional[str] = Field(None, alias="productType")


class MerchandiseIn(BaseModel):
    product: Optional[ProductIn] = None


class CartLineIn(BaseModel):
    merchandise: Optional[MerchandiseIn] = None


class MetafieldIn(BaseModel):
    namespace: str
    key: str
    value: Optional[str] = None


class CustomerIn(BaseModel):
    id: Optional[str] = None
    metafields: List[Optional[MetafieldIn]] = []


class BuyerIdentityIn(BaseModel):
    customer: Optional[CustomerIn] = None


class CartIn(_CamelModel):
    lines: List[CartLineIn] = []
    buyer_identity: Optional[BuyerIdentityIn] = Field(None, alias="buyerIdentity")


class CheckoutValidationIn(BaseModel):
    cart: CartIn


class ValidationErrorOut(_CamelModel):
    localized_message: str = Field(alias="localizedMessage")
    target: str


class CheckoutValidationOut(BaseModel):
    errors: List[ValidationErrorOut]


class HealthOut(BaseModel):
    status: str
