from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from .clock import Clock
from .config import settings
from .errors import Forbidden, Unauthenticated
from .sweeper import IdleSweeper


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str = "employee"


def current_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """Caller identity as forwarded by the authenticating gateway."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthenticated()
    return Actor(user_id=x_user_id.strip(), role=(x_user_role or "employee").strip().lower())


def require_reviewer(actor: Actor = Depends(current_actor)) -> Actor:
    if actor.role != settings.reviewer_role:
        raise Forbidden()
    return actor


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_sweeper(request: Request) -> IdleSweeper:
    return request.app.state.sweeper
