from datetime import datetime

from pydantic import BaseModel, EmailStr


class UserOut(BaseModel):
    id: str
    wallet_address: str
    farcaster_id: str | None = None
    email: str | None = None
    phone: str | None = None
    created_at: datetime


class UserUpdate(BaseModel):
    """PATCH /me: передаются только изменяемые поля."""

    farcaster_id: str | None = None
    email: EmailStr | None = None
    phone: str | None = None


class GrantOut(BaseModel):
    content_id: str | None
    template_id: str | None
    transaction_id: str
    access_granted_at: datetime
    expires_at: datetime | None = None


class UserSummaryOut(BaseModel):
    user: UserOut
    total_spent_cents: int
    total_spent_label: str
    grants: list[GrantOut]
    transactions_count: int
