from dataclasses import dataclass
from typing import Optional

from flask import session, request


@dataclass(frozen=True)
class RequestContext:
    """Who is asking for a report. Passed explicitly; reports never read the session."""

    actor_id: Optional[int] = None
    role: str = ""
    ip_address: str = ""


def current_context() -> RequestContext:
    try:
        actor_id = int(session.get("user_id") or 0) or None
    except (TypeError, ValueError):
        actor_id = None
    return RequestContext(
        actor_id=actor_id,
        role=(session.get("role") or "").strip(),
        ip_address=request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip(),
    )
