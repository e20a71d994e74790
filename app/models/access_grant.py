from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, String, UniqueConstraint

from app.db.base import Base


class AccessGrant(Base):
    __tablename__ = "user_content_access"
    __table_args__ = (
        UniqueConstraint("user_id", "content_id", name="uq_access_user_content"),
        UniqueConstraint("user_id", "template_id", name="uq_access_user_template"),
        CheckConstraint(
            "(content_id IS NULL) <> (template_id IS NULL)",
            name="ck_access_one_item",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    content_id = Column(String, nullable=True)
    template_id = Column(String, nullable=True)
    transaction_id = Column(String, nullable=False, index=True)
    access_granted_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)  # null = lifetime access
