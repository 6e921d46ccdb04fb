"""Map records and the storage keys bound to them.

The registry is the only writer of a map's asset columns. Every asset write
is a targeted single-column ``UPDATE``, so recording one role never discards
a concurrent write to another role of the same map.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import MAX_BATCH_FILES, MAX_FILE_SIZE
from core.errors import (
    AppError,
    ConflictError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from db.models.map import Map
from models.map import MapCreate, MapUpdate
from services.access import (
    MAP_NOT_FOUND,
    Principal,
    ensure_admin,
    ensure_readable,
    ensure_writable,
)
from services.assets.keys import (
    AssetKey,
    derive_key,
    derive_layer_key,
    folder_key,
    is_within_namespace,
    map_namespace,
)
from services.assets.roles import AssetKind, AssetRole, RoleClass
from services.storage.gateway import StorageGateway
from utility.string_methods import clean_allow, slugify

logger = logging.getLogger(__name__)

FILE_NOT_FOUND = "Map file not found"
SLUG_MAX_LENGTH = 255


@dataclass(frozen=True)
class IncomingFile:
    """A file received by the API for a server-side upload."""

    filename: str
    content: bytes


@dataclass(frozen=True)
class FileOutcome:
    """Result of one file of a batch: a stored key or the reason it failed."""

    filename: str
    key: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


# Lookups


async def _load_map(db: AsyncSession, map_id: int) -> Optional[Map]:
    result = await db.execute(
        select(Map).where(Map.id == map_id).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _require_map(db: AsyncSession, map_id: int, not_found: str = MAP_NOT_FOUND) -> Map:
    map_obj = await _load_map(db, map_id)
    if map_obj is None:
        raise NotFoundError(not_found)
    return map_obj


async def _find_by_slug(db: AsyncSession, slug: str) -> Optional[Map]:
    result = await db.execute(select(Map).where(Map.slug == slug))
    return result.scalars().first()


async def get_map(db: AsyncSession, map_id: int, principal: Optional[Principal]) -> Map:
    """Fetch a map by id if the caller may see it."""
    map_obj = await _require_map(db, map_id)
    ensure_readable(principal, map_obj)
    return map_obj


async def get_writable_map(db: AsyncSession, map_id: int, principal: Principal) -> Map:
    """Fetch a map the caller may modify."""
    map_obj = await _require_map(db, map_id)
    ensure_writable(principal, map_obj)
    return map_obj


async def get_map_by_slug(db: AsyncSession, slug: str, principal: Optional[Principal]) -> Map:
    """Fetch a map by slug if the caller may see it."""
    map_obj = await _find_by_slug(db, slug)
    if map_obj is None:
        raise NotFoundError(MAP_NOT_FOUND)
    ensure_readable(principal, map_obj)
    return map_obj


def _visible_to(query, principal: Optional[Principal]):
    if principal is None:
        return query.where(Map.is_published.is_(True))
    if principal.is_admin:
        return query
    return query.where(or_(Map.is_published.is_(True), Map.user_id == principal.id))


async def _paginate(db: AsyncSession, query, page: int, limit: int) -> Tuple[List[Map], int]:
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Map.created_at.desc(), Map.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return list(result.scalars().all()), total or 0


async def list_maps(
    db: AsyncSession,
    principal: Optional[Principal],
    page: int = 1,
    limit: int = 10,
    published: Optional[bool] = None,
) -> Tuple[List[Map], int]:
    """Maps visible to the caller, newest first."""
    query = _visible_to(select(Map), principal)
    if published is not None:
        query = query.where(Map.is_published.is_(published))
    return await _paginate(db, query, page, limit)


async def list_user_maps(
    db: AsyncSession, principal: Principal, page: int = 1, limit: int = 10
) -> Tuple[List[Map], int]:
    """Maps owned by the caller, published or not."""
    return await _paginate(db, select(Map).where(Map.user_id == principal.id), page, limit)


async def list_all_maps(
    db: AsyncSession, principal: Principal, page: int = 1, limit: int = 10
) -> Tuple[List[Map], int]:
    """Every map regardless of owner or publication (admins only)."""
    ensure_admin(principal)
    return await _paginate(db, select(Map), page, limit)


# Map metadata


def normalize_slug(candidate: str) -> str:
    slug = slugify(candidate)[:SLUG_MAX_LENGTH].strip("-")
    if not slug:
        raise ValidationError("Slug must contain at least one letter or digit")
    return slug


async def _ensure_slug_available(
    db: AsyncSession, slug: str, exclude_id: Optional[int] = None
) -> None:
    query = select(Map.id).where(Map.slug == slug)
    if exclude_id is not None:
        query = query.where(Map.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise ConflictError(f"A map with slug '{slug}' already exists")


async def _commit_slug_change(db: AsyncSession, slug: str) -> None:
    """Commit, turning a unique-slug race into the same conflict as the pre-check."""
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"A map with slug '{slug}' already exists")


async def create_map(db: AsyncSession, principal: Principal, payload: MapCreate) -> Map:
    """Create a map owned by the caller, deriving its slug from the title if needed."""
    slug = normalize_slug(payload.slug or payload.title)
    await _ensure_slug_available(db, slug)

    map_obj = Map(
        title=payload.title,
        description=payload.description,
        location=payload.location,
        slug=slug,
        is_published=payload.is_published,
        user_id=principal.id,
    )
    db.add(map_obj)
    await _commit_slug_change(db, slug)
    await db.refresh(map_obj)
    logger.info("Map %s (%s) created by user %s", map_obj.id, slug, principal.id)
    return map_obj


async def update_map(
    db: AsyncSession, map_id: int, principal: Principal, payload: MapUpdate
) -> Map:
    """Update map metadata; asset keys are written through ``record_asset_key``."""
    map_obj = await get_writable_map(db, map_id, principal)

    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("No fields provided for update")
    for required in ("title", "slug", "is_published"):
        if required in updates and updates[required] is None:
            raise ValidationError(f"Field '{required}' cannot be null")

    if "slug" in updates:
        updates["slug"] = normalize_slug(updates["slug"])
        if updates["slug"] != map_obj.slug:
            await _ensure_slug_available(db, updates["slug"], exclude_id=map_id)

    await db.execute(update(Map).where(Map.id == map_id).values(**updates))
    await _commit_slug_change(db, updates.get("slug", map_obj.slug))
    return await _require_map(db, map_id)


async def delete_map(db: AsyncSession, map_id: int, principal: Principal) -> None:
    """Delete the map row. Objects already in storage are left in place."""
    map_obj = await get_writable_map(db, map_id, principal)

    await db.delete(map_obj)
    await db.commit()
    logger.info(
        "Map %s deleted; storage objects under %s/ are not purged",
        map_id,
        map_namespace(map_id),
    )


# Asset references


def _storable_key(map_id: int, role: AssetRole, key: str) -> str:
    key = (key or "").strip()
    if not is_within_namespace(map_id, key):
        raise ValidationError(f"Key must be inside the map namespace '{map_namespace(map_id)}/'")
    if role.is_folder:
        folder = folder_key(map_id, role)
        if not key.startswith(folder):
            raise ValidationError(f"Key for '{role.value}' must be inside '{folder}'")
        return folder
    return key


async def record_asset_key(
    db: AsyncSession,
    map_id: int,
    role: Union[AssetRole, str],
    key: str,
    principal: Principal,
) -> Map:
    """Bind ``key`` to one asset role of a map, touching only that role's column."""
    asset_role = role if isinstance(role, AssetRole) else AssetRole.parse(role)
    await get_writable_map(db, map_id, principal)
    stored_key = _storable_key(map_id, asset_role, key)

    await db.execute(update(Map).where(Map.id == map_id).values({asset_role.column: stored_key}))
    await db.commit()
    logger.debug("Map %s: %s -> %s", map_id, asset_role.value, stored_key)
    return await _require_map(db, map_id)


async def record_layer(
    db: AsyncSession,
    map_id: int,
    layer_name: str,
    payload: Any,
    principal: Principal,
) -> Map:
    """Merge one named layer into the map's layer collection (last write wins per name)."""
    name = (layer_name or "").strip()
    if not name:
        raise ValidationError("Layer name is required")
    await get_writable_map(db, map_id, principal)

    result = await db.execute(
        select(Map.geojson_layers).where(Map.id == map_id).with_for_update()
    )
    layers = dict(result.scalar_one_or_none() or {})
    layers[name] = payload
    await db.execute(update(Map).where(Map.id == map_id).values(geojson_layers=layers))
    await db.commit()
    return await _require_map(db, map_id)


async def _find_map(db: AsyncSession, map_ref: Union[int, str]) -> Optional[Map]:
    if isinstance(map_ref, int):
        return await _load_map(db, map_ref)
    return await _find_by_slug(db, map_ref)


async def resolve_readable_key(
    db: AsyncSession,
    map_ref: Union[int, str],
    role: Union[AssetRole, str],
    principal: Optional[Principal],
) -> str:
    """Stored key of a role, if the map exists, the key is set and the caller may read it.

    A missing map, a hidden map and an empty role all raise the same error.
    """
    asset_role = role if isinstance(role, AssetRole) else AssetRole.parse(role)
    map_obj = await _find_map(db, map_ref)
    if map_obj is None:
        raise NotFoundError(FILE_NOT_FOUND)
    ensure_readable(principal, map_obj, not_found=FILE_NOT_FOUND)

    key = getattr(map_obj, asset_role.column)
    if not key:
        raise NotFoundError(FILE_NOT_FOUND)
    return key


# Batch uploads


GEOJSON_ROLES = {role.stem: role for role in AssetRole.for_kind(AssetKind.GEOJSON)}
FOLDER_ROLES = {RoleClass.PICTOS: AssetRole.PICTOS, RoleClass.LOGOS: AssetRole.LOGOS}


def _file_stem(filename: str) -> str:
    name = Path(filename or "").name
    return name.rsplit(".", 1)[0] if "." in name else name


def check_file_size(incoming: IncomingFile) -> None:
    if len(incoming.content) > MAX_FILE_SIZE:
        limit_mb = MAX_FILE_SIZE / (1024 * 1024)
        raise PayloadTooLargeError(f"File exceeds the {limit_mb:g}MB limit")


async def put_object(gateway: StorageGateway, asset: AssetKey, content: bytes) -> None:
    """Write an object through the (blocking) gateway without stalling the event loop."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, gateway.put_object, asset.key, content, asset.content_type)


async def _upload_one(
    db: AsyncSession,
    gateway: StorageGateway,
    map_id: int,
    principal: Principal,
    role_class: RoleClass,
    incoming: IncomingFile,
) -> str:
    check_file_size(incoming)

    layer_name = None
    if role_class is RoleClass.GEOJSON:
        stem = _file_stem(incoming.filename)
        role = GEOJSON_ROLES.get(stem.strip().lower())
        if role is not None:
            asset = derive_key(map_id, role, incoming.filename)
        else:
            asset = derive_layer_key(map_id, stem, incoming.filename)
            layer_name = clean_allow(stem)
    else:
        role = FOLDER_ROLES[role_class]
        asset = derive_key(map_id, role, incoming.filename)

    await put_object(gateway, asset, incoming.content)

    if role is not None:
        await record_asset_key(db, map_id, role, asset.key, principal)
    else:
        await record_layer(db, map_id, layer_name, asset.key, principal)
    return asset.key


async def upload_batch(
    db: AsyncSession,
    gateway: StorageGateway,
    map_id: int,
    principal: Principal,
    role_class: Union[RoleClass, str],
    files: Sequence[IncomingFile],
) -> List[FileOutcome]:
    """Store and record several files, one outcome per file.

    Files are independent: a failure is reported in its outcome and does not
    undo or prevent the others.
    """
    role_class = role_class if isinstance(role_class, RoleClass) else RoleClass.parse(role_class)
    if not files:
        raise ValidationError("No files provided")
    if len(files) > MAX_BATCH_FILES:
        raise ValidationError(f"Too many files: at most {MAX_BATCH_FILES} per batch")

    await get_writable_map(db, map_id, principal)

    outcomes: List[FileOutcome] = []
    for incoming in files:
        try:
            key = await _upload_one(db, gateway, map_id, principal, role_class, incoming)
        except AppError as exc:
            logger.warning("Batch file %s for map %s failed: %s", incoming.filename, map_id, exc)
            outcomes.append(FileOutcome(incoming.filename, error=exc.message))
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning("Recording %s for map %s failed: %s", incoming.filename, map_id, exc)
            outcomes.append(FileOutcome(incoming.filename, error="Failed to record file"))
        else:
            outcomes.append(FileOutcome(incoming.filename, key=key))
    return outcomes
