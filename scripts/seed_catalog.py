#!/usr/bin/env python3
"""
Создать таблицы и заполнить пустой каталог стартовыми карточками и шаблонами.
Запуск из корня проекта: python -m scripts.seed_catalog
или: PYTHONPATH=. python scripts/seed_catalog.py
"""
import os
import sys

# корень проекта в PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import access_grant, generated_document, legal_content, transaction, user  # noqa: F401
from app.services.content.service import ContentService


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        added = ContentService(db).seed_defaults()
        if not added:
            print("Каталог уже заполнен.")
            return
        print(f"Добавлено элементов каталога: {added}")
        for item in ContentService(db).list_content():
            print(f"  {item.id}  {item.price_cents}c  {item.title}")
        for tpl in ContentService(db).list_templates():
            print(f"  {tpl.id}  {tpl.price_cents}c  {tpl.name}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
