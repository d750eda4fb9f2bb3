from __future__ import annotations

import re

from prometheus_client import Counter, Histogram

# applied in order; later patterns see the output of earlier ones
_PATH_PATTERNS = (
    (re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"), "/:uuid"),
    (re.compile(r"/[0-9a-fA-F]{16,}"), "/:id"),
    (re.compile(r"/\d+"), "/:id"),
    (re.compile(r"/tenants/[^/]+"), "/tenants/:tenant"),
    (re.compile(r"^(/api/v1/admin/rules)/(?!evaluate$)[^/]+"), r"\1/:key"),
)


def normalize_path(path: str) -> str:
    """Collapse ids, tenant ids and rule keys so metric labels stay low-cardinality."""
    out = path or "/"
    for pattern, repl in _PATH_PATTERNS:
        out = pattern.sub(repl, out)
    return out


HTTP_REQUESTS_TOTAL = Counter(
    "change_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "change_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

AUTHZ_DECISIONS_TOTAL = Counter(
    "change_authz_decisions_total",
    "Permission and tenant authorization decisions",
    ["decision", "check"],
)

LOGIN_ATTEMPTS_TOTAL = Counter(
    "change_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "change_audit_write_failures_total",
    "Audit entries that could not be persisted",
    ["log"],
)

RULE_EVALUATIONS_TOTAL = Counter(
    "change_rule_evaluations_total",
    "Rule engine evaluations",
    ["source"],
)

RULES_MATCHED_TOTAL = Counter(
    "change_rules_matched_total",
    "Rules whose conditions matched during evaluation",
)
