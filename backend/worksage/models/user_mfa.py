"""User MFA settings model."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worksage.database import Base

if TYPE_CHECKING:
    from worksage.models.user import User


class UserMfa(Base):
    """TOTP configuration for a user.

    The secret is stored as an AES-GCM envelope split into ciphertext, IV and
    authentication tag (hex). All three are cleared when MFA is disabled.
    """

    __tablename__ = "user_mfa"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    secret_ciphertext: Mapped[str | None] = mapped_column(String(255))
    secret_iv: Mapped[str | None] = mapped_column(String(32))
    secret_tag: Mapped[str | None] = mapped_column(String(32))
    setup_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Setup envelopes issued before this instant cannot re-enable MFA
    disabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="mfa")

    def __repr__(self) -> str:
        return f"<UserMfa(user_id={self.user_id}, enabled={self.enabled})>"
