from datetime import datetime

from sqlalchemy import Integer, ForeignKey, String, Text, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base, utcnow

class FormTemplate(Base):
    __tablename__ = "form_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    schema_json: Mapped[str] = mapped_column(Text, default="{}")

    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    created_by = relationship("User")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    allow_delegation: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_multiple_submissions: Mapped[bool] = mapped_column(Boolean, default=False)

    # distribution targets (see form_distribution.py for lab/designation/user links)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    target_labs = relationship("FormTemplateLab", cascade="all, delete-orphan", lazy="selectin")
    target_designations = relationship("FormTemplateDesignation", cascade="all, delete-orphan", lazy="selectin")
    target_users = relationship("FormTemplateUser", cascade="all, delete-orphan", lazy="selectin")

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.deadline is None:
            return False
        return (now or utcnow()) > self.deadline
