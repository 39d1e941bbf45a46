from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase (what the web client sends/expects)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreateOrderIn(CamelModel):
    material_id: str = Field(..., min_length=1)
    guest_id: str | None = None


class CustomerIn(CamelModel):
    name: str | None = None
    email: str | None = None
    contact: str | None = None


class CreatePaymentLinkIn(CreateOrderIn):
    customer: CustomerIn | None = None


class OrderResult(CamelModel):
    order_id: str
    amount: int
    currency: str
    payment_id: str
    key_id: str | None = None
    reused: bool = False


class PaymentLinkResult(CamelModel):
    payment_link_id: str
    short_url: str | None = None
    qr_code: str | None = None
    amount: int
    currency: str
    order_id: str
    payment_id: str
    reused: bool = False


class VerifyPaymentIn(CamelModel):
    # accepts both razorpayOrderId and orderId spellings
    order_id: str = Field(..., min_length=1, validation_alias=AliasChoices("razorpayOrderId", "orderId"))
    payment_id: str = Field(..., min_length=1, validation_alias=AliasChoices("razorpayPaymentId", "paymentId"))
    signature: str = Field(..., min_length=1, validation_alias=AliasChoices("razorpaySignature", "signature"))
    guest_id: str | None = None


class DownloadLinkOut(CamelModel):
    download_url: str
    expires_at: datetime
    token: str


class AccessDecisionOut(CamelModel):
    material_id: str
    access_type: str
    granted: bool
    link_url: str | None = None
    requires_download_token: bool = False
