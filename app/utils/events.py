"""Workflow events and the sink that records them.

The chain engine only emits events; what happens to them (in-app
notifications, audit rows, e-mail via some other service) is the sink's
business. The default sink writes notifications and audit rows into the
same transaction as the transition, so both commit or roll back together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.utils.form_audit import add_form_audit_log
from app.utils.notify import notify


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    kind: str  # FORM_DELEGATED, FORM_MARKED_BACK, FORM_APPROVED, ...
    assignment_id: int
    template_id: int
    actor_id: int
    recipient_ids: tuple[int, ...] = ()
    title: str = ""
    message: str = ""
    remarks: str = ""
    lab_id: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    def emit(self, db: Session, event: WorkflowEvent) -> None: ...


class DbEventSink:
    """In-app notification per recipient plus one audit row per event."""

    def emit(self, db: Session, event: WorkflowEvent) -> None:
        for uid in event.recipient_ids:
            if uid == event.actor_id:
                continue
            notify(
                db,
                uid,
                event.message,
                template_id=event.template_id,
                assignment_id=event.assignment_id,
                type=event.kind,
                title=event.title,
            )
        add_form_audit_log(
            db,
            actor_id=event.actor_id,
            action=event.kind,
            entity="form_assignment",
            entity_id=event.assignment_id,
            lab_id=event.lab_id,
            after={"template_id": event.template_id, **event.extra},
            comment=event.remarks,
        )


class RecordingSink:
    """Keeps events in memory; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []

    def emit(self, db: Session, event: WorkflowEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]
