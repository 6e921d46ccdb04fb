"""Shared pictogram library stored under ``pictograms/<category>/``."""

import logging
from typing import List, Optional, Sequence, Tuple

from core.config import MAX_BATCH_FILES
from core.errors import AppError, ValidationError
from services.access import Principal, ensure_admin
from services.assets.keys import AssetKey, content_type_for
from services.assets.roles import IMAGE_EXTENSIONS
from services.registry import FileOutcome, IncomingFile, check_file_size, put_object
from services.storage.gateway import SignedUrl, StorageGateway, signed_listing
from utility.string_methods import clean_allow, file_extension, sanitize_filename

logger = logging.getLogger(__name__)

PICTOGRAM_ROOT = "pictograms"


def category_prefix(category: Optional[str]) -> str:
    name = clean_allow(category or "")
    if not name:
        raise ValidationError("Category name must contain letters or digits")
    return f"{PICTOGRAM_ROOT}/{name}/"


def list_pictogram_categories(gateway: StorageGateway) -> List[str]:
    root = f"{PICTOGRAM_ROOT}/"
    return [prefix[len(root) :].rstrip("/") for prefix in gateway.list_prefixes(root)]


def list_pictograms(gateway: StorageGateway, category: str) -> List[Tuple[str, SignedUrl]]:
    return signed_listing(gateway, category_prefix(category))


def pictogram_key(category: str, filename: str) -> AssetKey:
    extension = file_extension(filename or "")
    if extension not in IMAGE_EXTENSIONS:
        allowed = ", ".join(sorted(IMAGE_EXTENSIONS))
        raise ValidationError(f"Unsupported pictogram type '{filename}'. Allowed: {allowed}")
    name = sanitize_filename(filename)
    return AssetKey(f"{category_prefix(category)}{name}", content_type_for(name))


async def upload_pictograms(
    gateway: StorageGateway,
    principal: Principal,
    category: str,
    files: Sequence[IncomingFile],
) -> List[FileOutcome]:
    """Add images to a category; each file succeeds or fails on its own."""
    ensure_admin(principal)
    category_prefix(category)
    if not files:
        raise ValidationError("No files provided")
    if len(files) > MAX_BATCH_FILES:
        raise ValidationError(f"Too many files: at most {MAX_BATCH_FILES} per upload")

    outcomes: List[FileOutcome] = []
    for incoming in files:
        try:
            check_file_size(incoming)
            asset = pictogram_key(category, incoming.filename)
            await put_object(gateway, asset, incoming.content)
        except AppError as exc:
            logger.warning("Pictogram %s failed: %s", incoming.filename, exc)
            outcomes.append(FileOutcome(incoming.filename, error=exc.message))
        else:
            outcomes.append(FileOutcome(incoming.filename, key=asset.key))
    return outcomes
