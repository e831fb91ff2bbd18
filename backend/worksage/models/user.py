"""User model for authentication."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from worksage.constants import Role
from worksage.database import Base

if TYPE_CHECKING:
    from worksage.models.mfa_challenge import MfaChallenge
    from worksage.models.session import Session
    from worksage.models.user_backup_code import UserBackupCode
    from worksage.models.user_mfa import UserMfa


class User(Base):
    """User model representing authenticated principals."""

    __tablename__ = "users"
    __table_args__ = (
        # Federated-only accounts have no password, but every account has one of the two
        CheckConstraint(
            "password_hash IS NOT NULL OR google_id IS NOT NULL",
            name="ck_users_has_credential",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(100))
    password_hash: Mapped[str | None] = mapped_column(String(255))
    # Previous password hashes, oldest first. Written only by PasswordPolicy.
    password_history: Mapped[list[str]] = mapped_column(JSON, default=list)
    password_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    password_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    must_change_password: Mapped[bool] = mapped_column(Boolean, default=False)
    google_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    role: Mapped[str] = mapped_column(String(32), default=Role.UNASSIGNED.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    # Concurrent read-modify-write of the same row fails with StaleDataError
    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    sessions: Mapped[list["Session"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    mfa: Mapped["UserMfa | None"] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )
    backup_codes: Mapped[list["UserBackupCode"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    mfa_challenges: Mapped[list["MfaChallenge"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
