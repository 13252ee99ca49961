from __future__ import annotations

import re
from typing import Any, Dict, Optional

# "kind" tells the operator whether retrying is safe:
#   nothing_happened - the request was rejected before any write
#   blocked          - an unsafe change was refused; state is unchanged
#   unverified       - a collaborator could not be reached; outcome unknown
KIND_NOTHING_HAPPENED = "nothing_happened"
KIND_BLOCKED = "blocked"
KIND_UNVERIFIED = "unverified"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-:.]{0,127}$")


class FeedbackError(Exception):
    status_code = 500
    kind = KIND_UNVERIFIED

    def __init__(self, error: str, message: str, **context: Any):
        super().__init__(message)
        self.error = error
        self.message = message
        self.context = context

    @property
    def detail(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.error, "message": self.message, "kind": self.kind}
        out.update({k: v for k, v in self.context.items() if v is not None})
        return out


class FeedbackValidationError(FeedbackError):
    status_code = 400
    kind = KIND_NOTHING_HAPPENED


class FeedbackNotFoundError(FeedbackError):
    status_code = 404
    kind = KIND_NOTHING_HAPPENED


class FeedbackConflictError(FeedbackError):
    status_code = 409
    kind = KIND_BLOCKED


class UpstreamUnavailableError(FeedbackError):
    status_code = 503
    kind = KIND_UNVERIFIED


def require_identifier(value: object, field: str) -> str:
    text = str(value or "").strip()
    if not _IDENTIFIER_RE.match(text):
        raise FeedbackValidationError(
            "invalid_identifier",
            f"{field} is missing or malformed.",
            field=field,
            value=str(value) if value is not None else None,
        )
    return text


def optional_identifier(value: object, field: str) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return require_identifier(value, field)
