from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    # the browser client sends camelCase; scripts tend to send snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SaveDraftIn(_Body):
    template_id: int
    assignment_id: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    expected_version: int | None = None


class DelegateIn(_Body):
    template_id: int
    parent_assignment_id: int | None = None
    assigned_to_id: int
    remarks: str = ""
    expected_version: int | None = None


class AssignmentActionIn(_Body):
    assignment_id: int
    remarks: str = ""
    expected_version: int | None = None


class ApproveIn(AssignmentActionIn):
    data: dict[str, Any] | None = None


class MarkBackIn(AssignmentActionIn):
    target_actor_id: int
