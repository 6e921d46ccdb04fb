"""CRUD endpoints for maps and their assets."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_principal, get_optional_principal
from core.config import MAX_FILE_SIZE
from core.errors import ValidationError
from db.session import get_session
from models.asset import (
    BatchUploadRead,
    FileKeyUpdate,
    FileOutcomeRead,
    FolderEntry,
    FolderListing,
    LayerSave,
    SignedUrlRead,
    UploadUrlRead,
    UploadUrlRequest,
)
from models.map import MapCreate, MapList, MapRead, MapUpdate, PageMeta
from services import registry
from services.access import Principal
from services.assets.keys import derive_key
from services.assets.roles import AssetRole
from services.registry import FileOutcome, IncomingFile
from services.storage.gateway import (
    SignedUrl,
    StorageGateway,
    clamp_download_ttl,
    get_storage_gateway,
    signed_listing,
)

router = APIRouter(prefix="/maps", tags=["maps"])


def page_of_maps(maps, total: int, page: int, limit: int) -> MapList:
    return MapList(
        maps=[MapRead.model_validate(item) for item in maps],
        meta=PageMeta(
            total=total, page=page, limit=limit, pages=registry.page_count(total, limit)
        ),
    )


def _signed_read(signed: SignedUrl) -> SignedUrlRead:
    return SignedUrlRead(
        url=signed.url,
        key=signed.key,
        method=signed.method,
        expires_at=signed.expires_at,
        headers=signed.headers,
    )


def outcomes_read(outcomes: List[FileOutcome]) -> BatchUploadRead:
    results = [
        FileOutcomeRead(
            filename=item.filename, success=item.success, key=item.key, error=item.error
        )
        for item in outcomes
    ]
    succeeded = sum(1 for item in outcomes if item.success)
    return BatchUploadRead(results=results, succeeded=succeeded, failed=len(outcomes) - succeeded)


async def read_upload_files(files: List[UploadFile]) -> List[IncomingFile]:
    """Read multipart files, capped one byte past the limit so oversize is detectable."""
    incoming = []
    try:
        for file in files:
            content = await file.read(MAX_FILE_SIZE + 1)
            incoming.append(IncomingFile(filename=file.filename or "upload.bin", content=content))
    finally:
        for file in files:
            await file.close()
    return incoming


@router.get("/", response_model=MapList)
async def list_maps(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    published: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_session),
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> MapList:
    """List maps visible to the caller."""
    maps, total = await registry.list_maps(db, principal, page, limit, published)
    return page_of_maps(maps, total, page, limit)


@router.get("/user", response_model=MapList)
async def list_user_maps(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> MapList:
    """List the caller's own maps."""
    maps, total = await registry.list_user_maps(db, principal, page, limit)
    return page_of_maps(maps, total, page, limit)


@router.get("/slug/{slug}", response_model=MapRead)
async def get_map_by_slug(
    slug: str,
    db: AsyncSession = Depends(get_session),
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> MapRead:
    """Fetch a map by slug."""
    map_obj = await registry.get_map_by_slug(db, slug, principal)
    return MapRead.model_validate(map_obj)


@router.get("/slug/{slug}/file/{file_type}", response_model=SignedUrlRead)
async def get_map_file(
    slug: str,
    file_type: str,
    expires_in: Optional[int] = Query(None, description="URL lifetime in seconds (300-3600)"),
    db: AsyncSession = Depends(get_session),
    principal: Optional[Principal] = Depends(get_optional_principal),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> SignedUrlRead:
    """Return a short-lived download URL for one file of a map."""
    role = AssetRole.parse(file_type)
    if role.is_folder:
        raise ValidationError(f"File type '{role.value}' is a folder; list it instead")
    key = await registry.resolve_readable_key(db, slug, role, principal)
    return _signed_read(gateway.sign_download(key, clamp_download_ttl(expires_in)))


@router.get("/slug/{slug}/folder/{file_type}", response_model=FolderListing)
async def list_map_folder(
    slug: str,
    file_type: str,
    db: AsyncSession = Depends(get_session),
    principal: Optional[Principal] = Depends(get_optional_principal),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> FolderListing:
    """List the files of a folder role (pictos, logos) with download URLs."""
    role = AssetRole.parse(file_type)
    if not role.is_folder:
        raise ValidationError(f"File type '{role.value}' is not a folder")
    prefix = await registry.resolve_readable_key(db, slug, role, principal)
    entries = [
        FolderEntry(name=name, key=signed.key, url=signed.url)
        for name, signed in signed_listing(gateway, prefix)
    ]
    return FolderListing(files=entries)


@router.post("/", response_model=MapRead, status_code=status.HTTP_201_CREATED)
async def create_map(
    payload: MapCreate,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> MapRead:
    """Create a map."""
    map_obj = await registry.create_map(db, principal, payload)
    return MapRead.model_validate(map_obj)


@router.get("/{map_id}", response_model=MapRead)
async def get_map(
    map_id: int,
    db: AsyncSession = Depends(get_session),
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> MapRead:
    """Fetch a map by id."""
    map_obj = await registry.get_map(db, map_id, principal)
    return MapRead.model_validate(map_obj)


@router.patch("/{map_id}", response_model=MapRead)
async def update_map(
    map_id: int,
    payload: MapUpdate,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> MapRead:
    """Update map metadata."""
    map_obj = await registry.update_map(db, map_id, principal, payload)
    return MapRead.model_validate(map_obj)


@router.delete("/{map_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_map(
    map_id: int,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    """Delete a map."""
    await registry.delete_map(db, map_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{map_id}/upload-url", response_model=UploadUrlRead)
async def get_upload_url(
    map_id: int,
    payload: UploadUrlRequest,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> UploadUrlRead:
    """Sign a direct upload of one file for a map role.

    The client PUTs the file to the returned URL, then registers the key
    with ``PUT /maps/{map_id}/file``.
    """
    role = AssetRole.parse(payload.file_type)
    await registry.get_writable_map(db, map_id, principal)
    asset = derive_key(map_id, role, payload.filename)
    signed = gateway.sign_upload(asset.key, asset.content_type)
    return UploadUrlRead(**_signed_read(signed).model_dump(), content_type=asset.content_type)


@router.put("/{map_id}/file", response_model=MapRead)
async def update_file_url(
    map_id: int,
    payload: FileKeyUpdate,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> MapRead:
    """Record an uploaded file's key on a map role."""
    map_obj = await registry.record_asset_key(db, map_id, payload.file_type, payload.key, principal)
    return MapRead.model_validate(map_obj)


@router.put("/{map_id}/layers/{layer_name}", response_model=MapRead)
async def save_layer(
    map_id: int,
    layer_name: str,
    payload: LayerSave,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> MapRead:
    """Store a GeoJSON layer (or a key to one) under a name."""
    map_obj = await registry.record_layer(db, map_id, layer_name, payload.data, principal)
    return MapRead.model_validate(map_obj)


@router.post("/{map_id}/files/batch", response_model=BatchUploadRead)
async def upload_files_batch(
    map_id: int,
    role_class: str = Form(...),
    files: List[UploadFile] = File(...),
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> BatchUploadRead:
    """Upload several files through the API; the response reports each file separately."""
    incoming = await read_upload_files(files)
    outcomes = await registry.upload_batch(db, gateway, map_id, principal, role_class, incoming)
    return outcomes_read(outcomes)
