import enum
from datetime import datetime

from sqlalchemy import Integer, Enum, ForeignKey, Text, String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, utcnow


class AssignmentStatus(str, enum.Enum):
    PENDING = "pending"
    EDITED = "edited"
    FINALIZED = "finalized"
    APPROVED = "approved"
    SUBMITTED = "submitted"


STATUS_LABELS = {
    AssignmentStatus.PENDING: "Pending",
    AssignmentStatus.EDITED: "Edited",
    AssignmentStatus.FINALIZED: "Finalized",
    AssignmentStatus.APPROVED: "Approved",
    AssignmentStatus.SUBMITTED: "Submitted",
}

FINALIZED_STATES = (AssignmentStatus.FINALIZED, AssignmentStatus.APPROVED, AssignmentStatus.SUBMITTED)


class FormAssignment(Base):
    """One node of a delegation chain.

    Nodes are never deleted. The root node (no parent) also carries the chain
    bookkeeping: ``chain_version`` is bumped on every mutation of the chain and
    ``leaf_assignment_id`` always points at the node currently holding the form.
    """

    __tablename__ = "form_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("form_templates.id"), index=True)

    assigned_to_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    assigned_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    parent_assignment_id: Mapped[int | None] = mapped_column(
        ForeignKey("form_assignments.id"), nullable=True, index=True
    )
    # equals id for the root
    root_assignment_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    data_id: Mapped[int | None] = mapped_column(ForeignKey("submissions.id"), nullable=True, index=True)

    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus), index=True, default=AssignmentStatus.PENDING
    )
    last_action: Mapped[str] = mapped_column(String(50), default="")
    remarks: Mapped[str] = mapped_column(Text, default="")
    # delegation message as first given; remarks get overwritten by later actions
    instructions: Mapped[str] = mapped_column(Text, default="")

    # set by mark-back: the prior chain member expected to approve next
    routed_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    # root-only bookkeeping
    chain_version: Mapped[int] = mapped_column(Integer, default=0)
    leaf_assignment_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_assignment_id is None

    @property
    def is_finalized(self) -> bool:
        return self.status in FINALIZED_STATES

    @property
    def status_label(self) -> str:
        return STATUS_LABELS.get(self.status, getattr(self.status, "value", str(self.status)))
