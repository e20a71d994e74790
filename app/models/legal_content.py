"""
Каталог: карточки прав (legal_content) и шаблоны документов (document_templates).
Только чтение со стороны purchase-ядра; цены в центах.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base


class LegalContent(Base):
    __tablename__ = "legal_content"

    id = Column(String, primary_key=True)  # slug, e.g. "tenant-eviction-rights"
    title = Column(String, nullable=False)
    content_type = Column(String, nullable=False, default="card")  # card / guide / checklist / template
    category = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)  # markdown
    price_cents = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class DocumentTemplate(Base):
    __tablename__ = "document_templates"

    id = Column(String, primary_key=True)  # slug, e.g. "demand-letter-rent"
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, index=True)
    template_content = Column(Text, nullable=False, default="")
    required_fields = Column(JSON, nullable=False, default=list)  # ["landlordName", ...]
    price_cents = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
