"""Tests for DocumentService: access check, required fields, generation failures."""
from unittest.mock import MagicMock

import pytest

from app.models.generated_document import GeneratedDocument
from app.models.transaction import Transaction
from app.services.content.service import ContentService
from app.services.documents.service import AccessDenied, DocumentService, MissingFields, TemplateNotFound
from app.services.drafts.generator import DraftGenerationError
from app.services.ledger.service import AccessLedgerService

TEMPLATE = "workplace-complaint"
INPUTS = {
    "employerName": "Acme",
    "supervisorName": "Sam",
    "employeeName": "Alex",
    "incidentDate": "2024-05-01",
    "description": "Unpaid overtime",
}


@pytest.fixture
def paid(db):
    ContentService(db).seed_defaults()
    ledger = AccessLedgerService(db)
    tx = ledger.create_pending(user_id="u1", amount_cents=100, template_id=TEMPLATE)
    ledger.mark_completed(tx.id, "0xref")
    ledger.grant_access(user_id="u1", transaction_id=tx.id, template_id=TEMPLATE)
    return ledger


def test_generate_saves_document(db, paid):
    generator = MagicMock()
    generator.generate_document.return_value = "FORMAL COMPLAINT"
    doc = DocumentService(db, paid, generator).generate("u1", TEMPLATE, INPUTS)

    assert doc.document_content == "FORMAL COMPLAINT"
    assert doc.input_data["employerName"] == "Acme"
    generator.generate_document.assert_called_once_with("Formal Workplace Complaint", INPUTS)
    assert [d.id for d in DocumentService(db, paid, generator).list_documents("u1")] == [doc.id]


def test_requires_access(db, paid):
    generator = MagicMock()
    with pytest.raises(AccessDenied):
        DocumentService(db, paid, generator).generate("u2", TEMPLATE, INPUTS)
    generator.generate_document.assert_not_called()


def test_missing_fields(db, paid):
    inputs = dict(INPUTS, description="  ")
    with pytest.raises(MissingFields) as exc:
        DocumentService(db, paid, MagicMock()).generate("u1", TEMPLATE, inputs)
    assert exc.value.fields == ["description"]


def test_unknown_template(db, paid):
    with pytest.raises(TemplateNotFound):
        DocumentService(db, paid, MagicMock()).generate("u1", "no-such", INPUTS)


def test_generation_failure_keeps_payment_and_access(db, paid):
    generator = MagicMock()
    generator.generate_document.side_effect = DraftGenerationError("down")
    with pytest.raises(DraftGenerationError):
        DocumentService(db, paid, generator).generate("u1", TEMPLATE, INPUTS)

    assert db.query(GeneratedDocument).count() == 0
    assert db.query(Transaction).one().status == "completed"
    assert paid.has_access("u1", template_id=TEMPLATE)
