from .passwords import hash_password, verify_password
from .tokens import TokenPayload, issue_tokens, parse_expiry, verify_access_token

__all__ = ["TokenPayload", "hash_password", "issue_tokens", "parse_expiry", "verify_access_token", "verify_password"]
