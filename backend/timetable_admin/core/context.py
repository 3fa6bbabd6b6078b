from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, passed explicitly from the HTTP layer into the managers."""

    actor_id: str | None
    role: str | None = None
    request_id: str | None = None

    @classmethod
    def system(cls) -> "RequestContext":
        return cls(actor_id=None, role="system")
