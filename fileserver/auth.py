"""
HTTP Basic credential gate.

Pure functions: no I/O and no logging, so the dispatcher can call them for
every request without side effects.
"""
import base64
import enum
import hmac
from typing import Optional, Tuple

from .models import Request


class AuthDecision(enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


def basic_credentials(req: Request) -> Tuple[str, str]:
    """
    Username and password from the ``Authorization: Basic`` header.
    Anything missing or malformed decodes as empty strings.
    """
    header = req.headers.get("authorization", "").strip()
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "basic":
        return "", ""
    try:
        decoded = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except ValueError:
        return "", ""
    user, _, password = decoded.partition(":")
    return user, password


def _matches(expected: Optional[str], supplied: str) -> bool:
    if expected is None:
        return True
    return hmac.compare_digest(
        expected.encode("utf-8", "surrogateescape"),
        supplied.encode("utf-8", "surrogateescape"),
    )


def evaluate(req: Request, username: Optional[str] = None, password: Optional[str] = None) -> AuthDecision:
    # Only the configured half is checked when just one of them is set.
    if username is None and password is None:
        return AuthDecision.ALLOW

    user, pw = basic_credentials(req)
    if not _matches(username, user) or not _matches(password, pw):
        return AuthDecision.DENY
    return AuthDecision.ALLOW
