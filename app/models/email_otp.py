"""
One active OTP challenge per email. Rows are never updated:
a new issuance replaces the row, successful verification deletes it.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from app.db.base import Base


class EmailOtp(Base):
    __tablename__ = "email_otps"

    email = Column(String, primary_key=True)  # lower-cased
    otp = Column(String(6), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
