from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.legal_content import DocumentTemplate, LegalContent
from app.services.content.defaults import (
    CARD_PRICE_CENTS,
    DEFAULT_CONTENT,
    DEFAULT_TEMPLATES,
    TEMPLATE_PRICE_CENTS,
)


class CatalogItemNotFound(Exception):
    pass


class ContentService:
    def __init__(self, db: Session):
        self.db = db

    def list_content(self, category: str | None = None) -> list[LegalContent]:
        query = self.db.query(LegalContent).filter(LegalContent.is_active.is_(True))
        if category:
            query = query.filter(LegalContent.category == category)
        return query.order_by(LegalContent.created_at.desc(), LegalContent.id.asc()).all()

    def get_content(self, content_id: str) -> LegalContent | None:
        return (
            self.db.query(LegalContent)
            .filter(LegalContent.id == content_id, LegalContent.is_active.is_(True))
            .one_or_none()
        )

    def list_templates(self, category: str | None = None) -> list[DocumentTemplate]:
        query = self.db.query(DocumentTemplate).filter(DocumentTemplate.is_active.is_(True))
        if category:
            query = query.filter(DocumentTemplate.category == category)
        return query.order_by(DocumentTemplate.created_at.desc(), DocumentTemplate.id.asc()).all()

    def get_template(self, template_id: str) -> DocumentTemplate | None:
        return (
            self.db.query(DocumentTemplate)
            .filter(DocumentTemplate.id == template_id, DocumentTemplate.is_active.is_(True))
            .one_or_none()
        )

    def search(self, query: str) -> list[LegalContent]:
        """Поиск по заголовку и тексту карточки (только активные)."""
        q = (query or "").strip()
        if not q:
            return []
        pattern = f"%{q}%"
        return (
            self.db.query(LegalContent)
            .filter(
                LegalContent.is_active.is_(True),
                or_(LegalContent.title.ilike(pattern), LegalContent.content.ilike(pattern)),
            )
            .order_by(LegalContent.title.asc())
            .all()
        )

    def get_price(self, content_id: str | None = None, template_id: str | None = None) -> int:
        """Цена берётся только из каталога; клиентская цена никогда не используется."""
        if bool(content_id) == bool(template_id):
            raise ValueError("Exactly one of content_id / template_id is required")
        item = self.get_content(content_id) if content_id else self.get_template(template_id)
        if item is None:
            raise CatalogItemNotFound(content_id or template_id)
        return item.price_cents

    def seed_defaults(self) -> int:
        """Заполнить пустой каталог стартовыми карточками и шаблонами. Возвращает число добавленных строк."""
        added = 0
        for row in DEFAULT_CONTENT:
            if self.db.query(LegalContent).filter(LegalContent.id == row["id"]).one_or_none():
                continue
            self.db.add(LegalContent(content_type="card", price_cents=CARD_PRICE_CENTS, **row))
            added += 1
        for row in DEFAULT_TEMPLATES:
            if self.db.query(DocumentTemplate).filter(DocumentTemplate.id == row["id"]).one_or_none():
                continue
            self.db.add(
                DocumentTemplate(
                    description=row["name"],
                    template_content="",
                    price_cents=TEMPLATE_PRICE_CENTS,
                    **row,
                )
            )
            added += 1
        if added:
            self.db.commit()
        return added
