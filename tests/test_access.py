"""Tests for the map access rules."""

from types import SimpleNamespace

import pytest

from core.errors import ForbiddenError, NotFoundError
from services.access import (
    AccessDecision,
    Principal,
    decide_access,
    ensure_admin,
    ensure_readable,
    ensure_writable,
)

OWNER = Principal(id=1)
OTHER = Principal(id=2)
ADMIN = Principal(id=3, is_admin=True)


def _map(published: bool):
    return SimpleNamespace(user_id=OWNER.id, is_published=published)


@pytest.mark.unit
@pytest.mark.parametrize(
    "principal, published, expected",
    [
        (OWNER, False, AccessDecision.ALLOW_WRITE),
        (OWNER, True, AccessDecision.ALLOW_WRITE),
        (ADMIN, False, AccessDecision.ALLOW_WRITE),
        (OTHER, True, AccessDecision.ALLOW_READ),
        (None, True, AccessDecision.ALLOW_READ),
        (OTHER, False, AccessDecision.DENY),
        (None, False, AccessDecision.DENY),
    ],
)
def test_decide_access(principal, published, expected):
    assert decide_access(principal, _map(published)) is expected


@pytest.mark.unit
def test_hidden_map_reads_as_not_found():
    with pytest.raises(NotFoundError) as exc_info:
        ensure_readable(OTHER, _map(False))
    assert exc_info.value.message == "Map not found"


@pytest.mark.unit
def test_writes_by_non_owner():
    # Private maps stay hidden, public maps are visible but read-only
    with pytest.raises(NotFoundError):
        ensure_writable(OTHER, _map(False))
    with pytest.raises(ForbiddenError):
        ensure_writable(OTHER, _map(True))
    ensure_writable(ADMIN, _map(False))


@pytest.mark.unit
def test_ensure_admin():
    ensure_admin(ADMIN)
    for principal in (OWNER, None):
        with pytest.raises(ForbiddenError):
            ensure_admin(principal)
