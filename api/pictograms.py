"""Shared pictogram library endpoints."""

from typing import List

from fastapi import APIRouter, Depends, File, UploadFile

from api.deps import get_admin_principal
from api.maps import outcomes_read, read_upload_files
from models.asset import BatchUploadRead, FolderEntry, FolderListing
from services import pictograms
from services.access import Principal
from services.storage.gateway import StorageGateway, get_storage_gateway

router = APIRouter(prefix="/pictograms", tags=["pictograms"])


@router.get("/categories", response_model=List[str])
async def list_categories(
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> List[str]:
    """Names of the pictogram categories."""
    return pictograms.list_pictogram_categories(gateway)


@router.get("/{category}", response_model=FolderListing)
async def list_category(
    category: str,
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> FolderListing:
    """Pictograms of one category with download URLs."""
    entries = [
        FolderEntry(name=name, key=signed.key, url=signed.url)
        for name, signed in pictograms.list_pictograms(gateway, category)
    ]
    return FolderListing(files=entries)


@router.post("/{category}", response_model=BatchUploadRead)
async def upload_to_category(
    category: str,
    files: List[UploadFile] = File(...),
    principal: Principal = Depends(get_admin_principal),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> BatchUploadRead:
    """Add images to a category (admins only)."""
    incoming = await read_upload_files(files)
    outcomes = await pictograms.upload_pictograms(gateway, principal, category, incoming)
    return outcomes_read(outcomes)
