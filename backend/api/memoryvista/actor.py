from __future__ import annotations

from memoryvista.errors import Unauthenticated

ACTOR_HEADER = "X-Actor-Id"


def require_actor(x_actor_id: str | None) -> str:
    """
    Identity of the caller, taken from the X-Actor-Id header value.

    Endpoints declare the header themselves and pass its raw value here.
    Sign-in happens upstream at the identity provider, so an absent or blank
    value means the request never went through it: Unauthenticated (401).
    """
    actor = (x_actor_id or "").strip()
    if not actor:
        raise Unauthenticated()
    return actor
