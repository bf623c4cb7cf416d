"""
Request schemas. Every endpoint validates its query string or body against
one of these before any business logic runs.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class GetNumberQuery(RequestModel):
    # 'country' carries the catalog key, e.g. 'india_115'.
    country: str = Field(min_length=1, max_length=50)
    ref: Optional[str] = Field(None, max_length=32)


class TransactionQuery(RequestModel):
    id: str = Field(min_length=1, max_length=100)


class RegisterBody(RequestModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    ref: Optional[str] = Field(None, max_length=32)


class PartnerRegisterBody(RequestModel):
    markup_kind: Literal["percentage", "flat"] = "percentage"
    markup_value: int = Field(ge=0)
    code: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_-]{3,32}$")


class WithdrawBody(RequestModel):
    amount: int = Field(gt=0)


class UserIdBody(RequestModel):
    user_id: str = Field(min_length=1, max_length=128)


class AddBalanceBody(UserIdBody):
    amount: int = Field(gt=0)
    reason: Optional[str] = Field(None, max_length=255)


class UserUpdates(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    wallet: Optional[int] = Field(None, ge=0)
    is_admin: Optional[bool] = None


class UpdateUserBody(UserIdBody):
    updates: UserUpdates


class PartnerIdBody(RequestModel):
    partner_id: int = Field(gt=0)


class PartnerStatusBody(PartnerIdBody):
    status: Literal["active", "suspended"]
