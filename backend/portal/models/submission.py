from __future__ import annotations
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, Uuid, Index, CheckConstraint, func
from portal.db import Base


class Submission(Base):
    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str] = mapped_column(String(64), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    hobby: Mapped[str | None] = mapped_column(Text(), nullable=True)

    # artifact references into the uploads bucket
    profile_picture: Mapped[str | None] = mapped_column(Text(), nullable=True)
    zip_file: Mapped[str | None] = mapped_column(Text(), nullable=True)

    feedback: Mapped[str | None] = mapped_column(Text(), nullable=True)
    status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # NULL | 'accepted' | 'rejected'

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_submissions_created_at", "created_at"),
        CheckConstraint("status IS NULL OR status IN ('accepted', 'rejected')", name="ck_submissions_status"),
    )
