from .iam_audit import (
    IamAuditAction,
    export_iam_audit_logs,
    log_iam_action,
    log_iam_action_by,
    log_iam_action_from_request,
    query_iam_audit_logs,
)
from .sanitize import compute_diff, sanitize_for_log
from .service import AuditService

__all__ = [
    "AuditService",
    "IamAuditAction",
    "compute_diff",
    "export_iam_audit_logs",
    "log_iam_action",
    "log_iam_action_by",
    "log_iam_action_from_request",
    "query_iam_audit_logs",
    "sanitize_for_log",
]
