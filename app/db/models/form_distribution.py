from sqlalchemy import Integer, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base


class FormTemplateLab(Base):
    __tablename__ = "form_template_labs"
    __table_args__ = (UniqueConstraint("template_id", "lab_id", name="uq_form_template_lab"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id", ondelete="CASCADE"), index=True)
    lab_id: Mapped[int] = mapped_column(ForeignKey("labs.id"), index=True)


class FormTemplateDesignation(Base):
    """Designation filter. Applied to the template's labs, or to everyone when no lab is set."""

    __tablename__ = "form_template_designations"
    __table_args__ = (UniqueConstraint("template_id", "designation", name="uq_form_template_designation"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id", ondelete="CASCADE"), index=True)
    designation: Mapped[str] = mapped_column(String(120))


class FormTemplateUser(Base):
    __tablename__ = "form_template_users"
    __table_args__ = (UniqueConstraint("template_id", "user_id", name="uq_form_template_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
