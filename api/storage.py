"""
Transfer endpoint for the local-disk storage backend.

Signed URLs issued by ``LocalDiskGateway`` point here. Each request carries
its signature in the ``token`` query parameter:

- ``PUT`` streams the request body to the key, capped at ``MAX_FILE_SIZE``
- ``GET`` streams the stored object back in chunks
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from core.config import MAX_FILE_SIZE
from core.errors import ForbiddenError, NotFoundError
from services.assets.keys import content_type_for
from services.storage.gateway import (
    OP_DOWNLOAD,
    OP_UPLOAD,
    LocalDiskGateway,
    StorageGateway,
    get_storage_gateway,
)

router = APIRouter(prefix="/storage", tags=["storage"])

logger = logging.getLogger(__name__)

# Chunk size for streaming (1MB)
CHUNK_SIZE = 1024 * 1024


def _local_gateway(gateway: StorageGateway = Depends(get_storage_gateway)) -> LocalDiskGateway:
    if not isinstance(gateway, LocalDiskGateway):
        # Remote backends serve their own signed URLs
        raise NotFoundError()
    return gateway


def file_iterator(file_path: Path):
    """Yield a file in ``CHUNK_SIZE`` pieces."""
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


@router.put("/{key:path}", status_code=status.HTTP_201_CREATED)
async def upload_object(
    key: str,
    request: Request,
    token: str = Query(...),
    gateway: LocalDiskGateway = Depends(_local_gateway),
) -> dict:
    """Store the request body under ``key`` if the signature allows it."""
    claims = gateway.verify_transfer(key, OP_UPLOAD, token)
    expected = claims.get("ct")
    sent = request.headers.get("Content-Type", "")
    if expected and _media_type(sent) != _media_type(expected):
        raise ForbiddenError(f"Content-Type must be '{expected}'")

    size = await gateway.write_stream(key, request.stream(), MAX_FILE_SIZE)
    logger.info("Stored %s (%d bytes)", key, size)
    return {"key": key, "size": size}


@router.get("/{key:path}")
async def download_object(
    key: str,
    token: str = Query(...),
    gateway: LocalDiskGateway = Depends(_local_gateway),
) -> StreamingResponse:
    """Stream the object stored under ``key`` if the signature allows it."""
    gateway.verify_transfer(key, OP_DOWNLOAD, token)
    file_path = gateway.existing_path(key)
    return StreamingResponse(
        file_iterator(file_path),
        media_type=content_type_for(key),
        headers={
            "Content-Length": str(file_path.stat().st_size),
            "Content-Disposition": f'inline; filename="{file_path.name}"',
        },
    )
