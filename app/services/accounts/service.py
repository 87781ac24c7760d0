from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.account import Account, AccountRole, parse_role


class AccountService:
    """Account/profile rows. Device binding is only ever written by a guarded UPDATE."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: str) -> Account | None:
        return self.db.query(Account).filter(Account.id == account_id).one_or_none()

    def get_by_email(self, email: str) -> Account | None:
        return self.db.query(Account).filter(Account.email == email.strip().lower()).one_or_none()

    def upsert_profile(
        self,
        account_id: str,
        email: str,
        full_name: str | None = None,
        role: AccountRole | str = AccountRole.STUDENT,
        department: str | None = None,
        semester: str | None = None,
        verified: bool = False,
    ) -> Account:
        """Insert or update the profile fields. Never touches device_id."""
        role = parse_role(role.value if isinstance(role, AccountRole) else role)
        account = self.get(account_id)
        if account is None:
            account = Account(id=account_id, email=email, role=role.value)
            self.db.add(account)
        account.email = email
        account.full_name = full_name
        account.role = role.value
        account.department = department or None
        account.semester = semester or None
        if verified and account.verified_at is None:
            account.verified_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(account)
        return account

    @staticmethod
    def profile_from_metadata(account_id: str, email: str, metadata: dict[str, Any]) -> dict[str, Any]:
        """Profile fields synthesized from identity-provider metadata."""
        return {
            "account_id": account_id,
            "email": email,
            "full_name": metadata.get("full_name") or None,
            "role": parse_role(metadata.get("role") or AccountRole.STUDENT.value),
            "department": metadata.get("department") or None,
            "semester": metadata.get("semester") or None,
        }

    def bind_device_if_unbound(self, account_id: str, device_id: str) -> bool:
        """
        Single conditional write: UPDATE ... SET device_id WHERE device_id IS NULL.
        Returns True if this call performed the binding.
        """
        result = self.db.execute(
            update(Account)
            .where(Account.id == account_id, Account.device_id.is_(None))
            .values(device_id=device_id, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def get_bound_device(self, account_id: str) -> str | None:
        row = self.db.query(Account.device_id).filter(Account.id == account_id).one_or_none()
        return row[0] if row else None

    def reset_device(self, account_id: str) -> Account | None:
        """Administrative reset: the next student sign-in binds a new device."""
        account = self.get(account_id)
        if account is None:
            return None
        account.device_id = None
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        return account

    def set_role(self, account_id: str, role: AccountRole | str) -> Account | None:
        account = self.get(account_id)
        if account is None:
            return None
        account.role = parse_role(role.value if isinstance(role, AccountRole) else role).value
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        return account

    def list_accounts(self, role: AccountRole | None = None, limit: int = 100, offset: int = 0) -> list[Account]:
        q = self.db.query(Account)
        if role is not None:
            q = q.filter(Account.role == role.value)
        return q.order_by(Account.created_at.desc()).offset(offset).limit(limit).all()
