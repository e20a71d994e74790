"""
DocumentService - генерация документа по оплаченному шаблону.

Доступ проверяется по AccessGrant; сбой генерации не трогает платёж и грант (можно повторить).
"""
import logging

from sqlalchemy.orm import Session

from app.models.generated_document import GeneratedDocument
from app.services.content.service import ContentService
from app.services.drafts.generator import DraftGenerator
from app.services.ledger.service import AccessLedgerService

logger = logging.getLogger(__name__)


class AccessDenied(Exception):
    pass


class TemplateNotFound(Exception):
    pass


class MissingFields(Exception):
    def __init__(self, fields: list[str]):
        super().__init__(f"Missing required fields: {', '.join(fields)}")
        self.fields = fields


class DocumentService:
    def __init__(self, db: Session, ledger: AccessLedgerService, generator: DraftGenerator):
        self.db = db
        self.ledger = ledger
        self.generator = generator

    def generate(self, user_id: str, template_id: str, inputs: dict[str, str]) -> GeneratedDocument:
        template = ContentService(self.db).get_template(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        if not self.ledger.has_access(user_id, template_id=template_id):
            raise AccessDenied(template_id)

        cleaned = {k: str(v).strip() for k, v in (inputs or {}).items() if v is not None}
        missing = [f for f in (template.required_fields or []) if not cleaned.get(f)]
        if missing:
            raise MissingFields(missing)

        # DraftGenerationError пробрасывается наверх: документ не сохраняется
        content = self.generator.generate_document(template.name, cleaned)
        doc = GeneratedDocument(
            user_id=user_id,
            template_id=template_id,
            document_content=content,
            input_data=cleaned,
        )
        self.db.add(doc)
        self.db.commit()
        self.db.refresh(doc)
        logger.info("document_generated", extra={"user_id": user_id, "template_id": template_id})
        return doc

    def list_documents(self, user_id: str, limit: int = 50) -> list[GeneratedDocument]:
        return (
            self.db.query(GeneratedDocument)
            .filter(GeneratedDocument.user_id == user_id)
            .order_by(GeneratedDocument.created_at.desc())
            .limit(limit)
            .all()
        )
