from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, ForeignKey, Text, String, Enum, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utcnow
from app.db.models.assignment import AssignmentStatus


class Submission(Base):
    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id"), index=True)
    submitted_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    lab_id: Mapped[int | None] = mapped_column(ForeignKey("labs.id"), nullable=True, index=True)

    # mirrors the workflow status of the assignment that owns this payload
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus), index=True, default=AssignmentStatus.EDITED
    )

    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    ip_address: Mapped[str] = mapped_column(String(64), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
