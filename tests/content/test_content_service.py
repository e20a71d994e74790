"""Tests for ContentService: seeded catalog, filters, search, catalog prices."""
import pytest

from app.models.legal_content import LegalContent
from app.services.content.defaults import CATEGORY_IDS
from app.services.content.service import CatalogItemNotFound, ContentService


@pytest.fixture
def catalog(db):
    service = ContentService(db)
    service.seed_defaults()
    return service


def test_seed_is_idempotent(db):
    service = ContentService(db)
    assert service.seed_defaults() == 8
    assert service.seed_defaults() == 0


def test_seeded_prices(catalog):
    assert catalog.get_price(content_id="tenant-eviction-rights") == 50
    assert catalog.get_price(template_id="demand-letter-rent") == 100


def test_seeded_categories_are_known(catalog):
    assert {c.category for c in catalog.list_content()} <= CATEGORY_IDS


def test_filter_by_category(catalog):
    items = catalog.list_content("traffic")
    assert [i.id for i in items] == ["traffic-stop-rights"]
    templates = catalog.list_templates("employment")
    assert [t.id for t in templates] == ["workplace-complaint"]


def test_inactive_hidden(db, catalog):
    item = db.query(LegalContent).filter(LegalContent.id == "arrest-rights").one()
    item.is_active = False
    db.commit()
    assert catalog.get_content("arrest-rights") is None
    with pytest.raises(CatalogItemNotFound):
        catalog.get_price(content_id="arrest-rights")


def test_search_title_and_body(catalog):
    assert [i.id for i in catalog.search("eviction")] == ["tenant-eviction-rights"]
    assert "arrest-rights" in [i.id for i in catalog.search("miranda")]
    assert catalog.search("   ") == []


def test_get_price_requires_one_item(catalog):
    with pytest.raises(ValueError):
        catalog.get_price()
    with pytest.raises(CatalogItemNotFound):
        catalog.get_price(template_id="no-such-template")


def test_template_required_fields(catalog):
    tpl = catalog.get_template("consumer-complaint")
    assert "companyName" in tpl.required_fields
