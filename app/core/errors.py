"""Typed workflow errors.

Every rejected transition names the rule it broke, so the caller can show a
precise message ("this form has already been passed to someone else")
instead of a generic failure. None of these are retried by the engine;
only ``ConcurrentModification`` is safe for a caller to retry after
re-reading the chain.
"""

from __future__ import annotations


class WorkflowError(Exception):
    code = "workflow_error"
    status_code = 400
    retryable = False
    default_message = "Workflow action rejected."

    def __init__(self, message: str | None = None, *, errors: list[str] | None = None):
        self.message = message or self.default_message
        self.errors = list(errors or [])
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code, "retryable": self.retryable}
        if self.errors:
            body["errors"] = self.errors
        return body


class NotFound(WorkflowError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class NotCurrentHolder(WorkflowError):
    code = "not_current_holder"
    status_code = 403
    default_message = "This form has already been passed to someone else."


class DelegationNotAllowed(WorkflowError):
    code = "delegation_not_allowed"
    status_code = 403
    default_message = "Delegation is not allowed for this form."


class InvalidTarget(WorkflowError):
    code = "invalid_target"
    status_code = 400
    default_message = "The selected user is not an eligible recipient of this form."


class AlreadyFinalized(WorkflowError):
    code = "already_finalized"
    status_code = 409
    default_message = "This form has already been marked final."


class ChainClosed(WorkflowError):
    code = "chain_closed"
    status_code = 409
    default_message = "This form has already been submitted to the distributor."


class TemplateInactiveOrExpired(WorkflowError):
    code = "template_inactive_or_expired"
    status_code = 410
    default_message = "This form is no longer accepting responses."


class ConcurrentModification(WorkflowError):
    code = "concurrent_modification"
    status_code = 409
    retryable = True
    default_message = "This form was changed by someone else. Reload and try again."


class ValidationFailed(WorkflowError):
    code = "validation_failed"
    status_code = 422
    default_message = "The form data is incomplete or invalid."


class ApprovalAuthorityRequired(WorkflowError):
    code = "approval_authority_required"
    status_code = 403
    default_message = "Your designation is not authorized to provide approvals."
