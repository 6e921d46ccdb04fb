"""Ownership and visibility rules for maps.

``decide_access`` is the single place where a caller's rights on a map are
computed. It has no side effects; the ``ensure_*`` helpers turn its answer
into the error a handler should raise.

Denied reads of an unpublished map are reported exactly like a map that does
not exist, so private maps cannot be discovered by probing ids or slugs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from core.errors import ForbiddenError, NotFoundError

MAP_NOT_FOUND = "Map not found"


@dataclass(frozen=True)
class Principal:
    """An authenticated caller."""

    id: int
    is_admin: bool = False

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(id=user.id, is_admin=bool(user.is_admin))


class OwnedMap(Protocol):
    user_id: int
    is_published: bool


class AccessDecision(str, Enum):
    ALLOW_WRITE = "allow-write"
    ALLOW_READ = "allow-read"
    DENY = "deny"

    @property
    def can_read(self) -> bool:
        return self is not AccessDecision.DENY

    @property
    def can_write(self) -> bool:
        return self is AccessDecision.ALLOW_WRITE


def decide_access(principal: Optional[Principal], map_obj: OwnedMap) -> AccessDecision:
    """Rights of ``principal`` (``None`` for anonymous callers) on ``map_obj``."""
    if principal is not None and (principal.id == map_obj.user_id or principal.is_admin):
        return AccessDecision.ALLOW_WRITE
    if map_obj.is_published:
        return AccessDecision.ALLOW_READ
    return AccessDecision.DENY


def ensure_readable(
    principal: Optional[Principal], map_obj: OwnedMap, not_found: str = MAP_NOT_FOUND
) -> None:
    if not decide_access(principal, map_obj).can_read:
        raise NotFoundError(not_found)


def ensure_writable(principal: Optional[Principal], map_obj: OwnedMap) -> None:
    decision = decide_access(principal, map_obj)
    if decision is AccessDecision.DENY:
        raise NotFoundError(MAP_NOT_FOUND)
    if not decision.can_write:
        raise ForbiddenError("Not authorized to update this map")


def ensure_admin(principal: Optional[Principal]) -> None:
    if principal is None or not principal.is_admin:
        raise ForbiddenError("Admin access required")
