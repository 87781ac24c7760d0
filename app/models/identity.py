"""Credential record of the bundled identity provider (bcrypt hash, never the raw password)."""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from app.db.base import Base, JSONType


class Identity(Base):
    __tablename__ = "identities"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    user_metadata = Column(JSONType, nullable=False, default=dict)  # full_name, role, department, semester
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    last_sign_in_at = Column(DateTime(timezone=True), nullable=True)
