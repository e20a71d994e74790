import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_draft_generator
from app.db.session import get_db
from app.models.user import User
from app.schemas.documents import DocumentIn, DocumentOut
from app.services.documents.service import AccessDenied, DocumentService, MissingFields, TemplateNotFound
from app.services.drafts.generator import DraftGenerationError, DraftGenerator
from app.services.ledger.service import AccessLedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def _document_out(doc) -> DocumentOut:
    return DocumentOut(
        id=doc.id,
        template_id=doc.template_id,
        document_content=doc.document_content,
        input_data=doc.input_data or {},
        created_at=doc.created_at,
    )


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def generate_document(
    body: DocumentIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    generator: DraftGenerator = Depends(get_draft_generator),
) -> DocumentOut:
    service = DocumentService(db, AccessLedgerService(db), generator)
    try:
        doc = service.generate(user.id, body.template_id, body.inputs)
    except TemplateNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found") from e
    except AccessDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Template not purchased") from e
    except MissingFields as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "fields": e.fields},
        ) from e
    except DraftGenerationError as e:
        logger.warning("document_generation_failed", extra={"user_id": user.id, "error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Document generation failed, please try again",
        ) from e
    return _document_out(doc)


@router.get("", response_model=list[DocumentOut])
def list_documents(db: Session = Depends(get_db), user: User = Depends(get_current_user)) -> list[DocumentOut]:
    service = DocumentService(db, AccessLedgerService(db), None)
    return [_document_out(doc) for doc in service.list_documents(user.id)]
