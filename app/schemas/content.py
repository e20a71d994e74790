from datetime import datetime

from pydantic import BaseModel

from app.paywall.models import UnlockOptions


class ContentOut(BaseModel):
    """Карточка. content = None, пока элемент заблокирован для вызывающего."""

    id: str
    title: str
    content_type: str
    category: str
    price_cents: int
    price_label: str
    locked: bool
    content: str | None = None
    unlock_options: UnlockOptions | None = None


class TemplateOut(BaseModel):
    id: str
    name: str
    description: str | None
    category: str
    required_fields: list[str]
    price_cents: int
    price_label: str
    locked: bool
    unlock_options: UnlockOptions | None = None


class CategoryOut(BaseModel):
    id: str
    title: str
    description: str


class SearchResultOut(BaseModel):
    id: str
    title: str
    category: str
    price_cents: int
    created_at: datetime | None = None
