from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_optional_user
from app.db.session import get_db
from app.models.user import User
from app.paywall import AccessContext, decide_access
from app.schemas.content import CategoryOut, ContentOut, SearchResultOut, TemplateOut
from app.services.content.defaults import CATEGORIES
from app.services.content.service import ContentService
from app.services.ledger.service import AccessLedgerService
from app.utils.currency import format_price

router = APIRouter(tags=["content"])


def _decision(ledger: AccessLedgerService, user: User | None, price_cents: int, **item):
    has_access = False
    last_status = None
    if user is not None:
        has_access = ledger.has_access(user.id, **item)
        if not has_access:
            tx = ledger.latest_transaction(user.id, **item)
            last_status = tx.status if tx else None
    return decide_access(
        AccessContext(
            user_id=user.id if user else None,
            price_cents=price_cents,
            has_access=has_access,
            last_transaction_status=last_status,
        )
    )


def _content_out(item, decision) -> ContentOut:
    return ContentOut(
        id=item.id,
        title=item.title,
        content_type=item.content_type,
        category=item.category,
        price_cents=item.price_cents,
        price_label=format_price(item.price_cents),
        locked=decision.locked,
        content=None if decision.locked else item.content,
        unlock_options=decision.unlock_options,
    )


def _template_out(item, decision) -> TemplateOut:
    return TemplateOut(
        id=item.id,
        name=item.name,
        description=item.description,
        category=item.category,
        required_fields=list(item.required_fields or []),
        price_cents=item.price_cents,
        price_label=format_price(item.price_cents),
        locked=decision.locked,
        unlock_options=decision.unlock_options,
    )


@router.get("/categories", response_model=list[CategoryOut])
def list_categories() -> list[CategoryOut]:
    return [CategoryOut(**c) for c in CATEGORIES]


@router.get("/content", response_model=list[ContentOut])
def list_content(
    category: str | None = None,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
) -> list[ContentOut]:
    ledger = AccessLedgerService(db)
    return [
        _content_out(item, _decision(ledger, user, item.price_cents, content_id=item.id))
        for item in ContentService(db).list_content(category)
    ]


@router.get("/content/{content_id}", response_model=ContentOut)
def get_content(
    content_id: str,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
) -> ContentOut:
    item = ContentService(db).get_content(content_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")
    ledger = AccessLedgerService(db)
    return _content_out(item, _decision(ledger, user, item.price_cents, content_id=item.id))


@router.get("/templates", response_model=list[TemplateOut])
def list_templates(
    category: str | None = None,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
) -> list[TemplateOut]:
    ledger = AccessLedgerService(db)
    return [
        _template_out(item, _decision(ledger, user, item.price_cents, template_id=item.id))
        for item in ContentService(db).list_templates(category)
    ]


@router.get("/templates/{template_id}", response_model=TemplateOut)
def get_template(
    template_id: str,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
) -> TemplateOut:
    item = ContentService(db).get_template(template_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    ledger = AccessLedgerService(db)
    return _template_out(item, _decision(ledger, user, item.price_cents, template_id=item.id))


@router.get("/search", response_model=list[SearchResultOut])
def search(q: str = Query("", max_length=200), db: Session = Depends(get_db)) -> list[SearchResultOut]:
    return [
        SearchResultOut(
            id=item.id,
            title=item.title,
            category=item.category,
            price_cents=item.price_cents,
            created_at=item.created_at,
        )
        for item in ContentService(db).search(q)
    ]
