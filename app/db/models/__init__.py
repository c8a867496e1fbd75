# Import all models so SQLAlchemy metadata is fully populated on startup.
from app.db.models.lab import Lab
from app.db.models.user import User
from app.db.models.form_template import FormTemplate
from app.db.models.form_distribution import FormTemplateLab, FormTemplateDesignation, FormTemplateUser
from app.db.models.assignment import FormAssignment
from app.db.models.submission import Submission
from app.db.models.workflow_log import WorkflowLog
from app.db.models.notification import Notification
from app.db.models.form_audit_log import FormAuditLog


__all__ = [
    "Lab",
    "User",
    "FormTemplate",
    "FormTemplateLab",
    "FormTemplateDesignation",
    "FormTemplateUser",
    "FormAssignment",
    "Submission",
    "WorkflowLog",
    "Notification",
    "FormAuditLog",
]
