"""Object storage access: signed transfer URLs, direct writes and listings.

Clients move bytes straight to and from storage with short-lived signed URLs;
the API only signs. Two backends are available:

- Azure Blob Storage (``USE_AZURE_STORAGE=true``), signed with SAS tokens.
- Local disk (default), signed with a JWT and served by ``api/storage.py``.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import quote

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, ContentSettings
from azure.storage.blob import generate_blob_sas
from jose import JWTError, jwt

from core.config import (
    AZ_CONN,
    AZ_CONTAINER,
    BASE_URL,
    DOWNLOAD_URL_TTL_SECONDS,
    LOCAL_UPLOAD_DIR,
    MAX_DOWNLOAD_TTL_SECONDS,
    MIN_DOWNLOAD_TTL_SECONDS,
    SECRET_KEY,
    UPLOAD_URL_TTL_SECONDS,
    USE_AZURE,
)
from core.errors import (
    ForbiddenError,
    NotFoundError,
    PayloadTooLargeError,
    StorageUnavailableError,
    ValidationError,
)
from core.security import ALGORITHM

logger = logging.getLogger(__name__)

OP_UPLOAD = "put"
OP_DOWNLOAD = "get"


@dataclass(frozen=True)
class SignedUrl:
    """A time-limited URL for one transfer of one object."""

    url: str
    key: str
    method: str
    expires_at: datetime
    headers: Dict[str, str] = field(default_factory=dict)


def clamp_download_ttl(ttl_seconds: Optional[int]) -> int:
    """Keep a requested download lifetime within the allowed window."""
    if ttl_seconds is None:
        return DOWNLOAD_URL_TTL_SECONDS
    return max(MIN_DOWNLOAD_TTL_SECONDS, min(MAX_DOWNLOAD_TTL_SECONDS, ttl_seconds))


def _expiry(ttl_seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)


class StorageGateway(ABC):
    """Backend-neutral contract used by the registry and the API."""

    @abstractmethod
    def sign_upload(
        self, key: str, content_type: str, ttl_seconds: int = UPLOAD_URL_TTL_SECONDS
    ) -> SignedUrl:
        """Sign a PUT of ``content_type`` to ``key``."""

    @abstractmethod
    def sign_download(self, key: str, ttl_seconds: int = DOWNLOAD_URL_TTL_SECONDS) -> SignedUrl:
        """Sign a GET of ``key``."""

    @abstractmethod
    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        """Write ``body`` to ``key`` from the server side."""

    @abstractmethod
    def list_objects(self, prefix: str) -> List[str]:
        """Keys of every object below ``prefix``."""

    @abstractmethod
    def list_prefixes(self, prefix: str) -> List[str]:
        """Immediate "sub-folder" prefixes below ``prefix``, each ending in ``/``."""


class AzureBlobGateway(StorageGateway):
    """Azure Blob Storage backend signing with account-key SAS tokens."""

    def __init__(self, conn_string: str, container_name: str):
        self._conn_string = conn_string
        self._container_name = container_name

    def _account_credentials(self) -> tuple[str, str]:
        # Parse connection string to extract account credentials
        conn_parts = dict(
            part.split("=", 1) for part in self._conn_string.split(";") if "=" in part
        )
        account_name = conn_parts.get("AccountName")
        account_key = conn_parts.get("AccountKey")
        if not account_name or not account_key:
            logger.error("Azure connection string lacks AccountName/AccountKey")
            raise StorageUnavailableError("Storage credentials are not configured")
        return account_name, account_key

    def _container(self):
        try:
            blob_svc = BlobServiceClient.from_connection_string(self._conn_string)
            return blob_svc.get_container_client(self._container_name)
        except (ValueError, AzureError) as exc:
            logger.error("Failed to create Azure container client: %s", exc)
            raise StorageUnavailableError()

    def _sign(
        self, key: str, permission: BlobSasPermissions, ttl_seconds: int
    ) -> tuple[str, datetime]:
        account_name, account_key = self._account_credentials()
        expires_at = _expiry(ttl_seconds)
        try:
            sas_token = generate_blob_sas(
                account_name=account_name,
                container_name=self._container_name,
                blob_name=key,
                account_key=account_key,
                permission=permission,
                expiry=expires_at,
            )
        except (ValueError, TypeError, AzureError) as exc:
            logger.error("Failed to generate SAS for %s: %s", key, exc)
            raise StorageUnavailableError("Failed to sign storage URL")
        blob_url = f"{self._container().url}/{quote(key)}"
        return f"{blob_url}?{sas_token}", expires_at

    def sign_upload(
        self, key: str, content_type: str, ttl_seconds: int = UPLOAD_URL_TTL_SECONDS
    ) -> SignedUrl:
        url, expires_at = self._sign(key, BlobSasPermissions(create=True, write=True), ttl_seconds)
        return SignedUrl(
            url=url,
            key=key,
            method="PUT",
            expires_at=expires_at,
            headers={"Content-Type": content_type, "x-ms-blob-type": "BlockBlob"},
        )

    def sign_download(self, key: str, ttl_seconds: int = DOWNLOAD_URL_TTL_SECONDS) -> SignedUrl:
        url, expires_at = self._sign(key, BlobSasPermissions(read=True), ttl_seconds)
        return SignedUrl(url=url, key=key, method="GET", expires_at=expires_at)

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        container = self._container()
        try:
            container.upload_blob(
                name=key,
                data=body,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as exc:
            logger.error("Upload of %s to Azure failed: %s", key, exc)
            raise StorageUnavailableError("Upload to storage failed")

    def list_objects(self, prefix: str) -> List[str]:
        container = self._container()
        try:
            return [blob.name for blob in container.list_blobs(name_starts_with=prefix)]
        except AzureError as exc:
            logger.error("Listing %s in Azure failed: %s", prefix, exc)
            raise StorageUnavailableError()

    def list_prefixes(self, prefix: str) -> List[str]:
        container = self._container()
        try:
            return [
                item.name
                for item in container.walk_blobs(name_starts_with=prefix, delimiter="/")
                if item.name.endswith("/")
            ]
        except AzureError as exc:
            logger.error("Listing prefixes of %s in Azure failed: %s", prefix, exc)
            raise StorageUnavailableError()


class LocalDiskGateway(StorageGateway):
    """Stores objects under a local directory; transfers go through ``/api/storage``."""

    def __init__(self, root_dir: str, base_url: str, secret_key: str = SECRET_KEY):
        self._root = Path(root_dir).resolve()
        self._base_url = base_url.rstrip("/")
        self._secret_key = secret_key

    # Signing

    def _signed(self, key: str, op: str, ttl_seconds: int, content_type: Optional[str] = None):
        self.resolve_path(key)
        expires_at = _expiry(ttl_seconds)
        claims = {"key": key, "op": op, "exp": expires_at}
        if content_type:
            claims["ct"] = content_type
        token = jwt.encode(claims, self._secret_key, algorithm=ALGORITHM)
        url = f"{self._base_url}/api/storage/{quote(key)}?token={token}"
        return url, expires_at

    def sign_upload(
        self, key: str, content_type: str, ttl_seconds: int = UPLOAD_URL_TTL_SECONDS
    ) -> SignedUrl:
        url, expires_at = self._signed(key, OP_UPLOAD, ttl_seconds, content_type)
        return SignedUrl(
            url=url,
            key=key,
            method="PUT",
            expires_at=expires_at,
            headers={"Content-Type": content_type},
        )

    def sign_download(self, key: str, ttl_seconds: int = DOWNLOAD_URL_TTL_SECONDS) -> SignedUrl:
        url, expires_at = self._signed(key, OP_DOWNLOAD, ttl_seconds)
        return SignedUrl(url=url, key=key, method="GET", expires_at=expires_at)

    def verify_transfer(self, key: str, op: str, token: str) -> dict:
        """Check a signed URL token against the requested key and operation."""
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except JWTError:
            raise ForbiddenError("Invalid or expired signature")
        if claims.get("key") != key or claims.get("op") != op:
            raise ForbiddenError("Invalid or expired signature")
        return claims

    # Paths

    def resolve_path(self, key: str) -> Path:
        """Map a key to a path inside the storage root, rejecting traversal."""
        if not key or not key.strip() or key.startswith("/"):
            raise ValidationError("Invalid storage key")
        normalized = os.path.normpath(key)
        if os.path.isabs(normalized) or normalized.startswith(".."):
            raise ValidationError("Invalid storage key")
        fullpath = (self._root / normalized).resolve()
        try:
            fullpath.relative_to(self._root)
        except ValueError:
            raise ValidationError("Invalid storage key")
        return fullpath

    def existing_path(self, key: str) -> Path:
        path = self.resolve_path(key)
        if not path.is_file():
            raise NotFoundError("File not found")
        return path

    # Transfers

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        dest_path = self.resolve_path(key)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_bytes(body)
        except OSError as exc:
            logger.error("Writing %s to local storage failed: %s", key, exc)
            raise StorageUnavailableError("Upload to storage failed")

    async def write_stream(self, key: str, chunks: AsyncIterator[bytes], limit: int) -> int:
        """Stream chunks to ``key``, removing the partial file on any failure."""
        dest_path = self.resolve_path(key)
        total = 0
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with open(dest_path, "wb") as out:
                async for data in chunks:
                    total += len(data)
                    if total > limit:
                        raise PayloadTooLargeError(f"File exceeds the {limit} byte limit.")
                    out.write(data)
        except Exception as exc:
            # Remove partial file
            dest_path.unlink(missing_ok=True)
            if isinstance(exc, OSError):
                logger.error("Writing %s to local storage failed: %s", key, exc)
                raise StorageUnavailableError("Upload to storage failed")
            raise
        return total

    def _listing_base(self, prefix: str) -> Path:
        if not prefix.strip("/"):
            return self._root
        return self.resolve_path(prefix.rstrip("/"))

    def list_objects(self, prefix: str) -> List[str]:
        base = self._listing_base(prefix)
        if not base.is_dir():
            return []
        keys = [path.relative_to(self._root).as_posix() for path in base.rglob("*")]
        return sorted(key for key in keys if (self._root / key).is_file())

    def list_prefixes(self, prefix: str) -> List[str]:
        base = self._listing_base(prefix)
        if not base.is_dir():
            return []
        folders = [path for path in base.iterdir() if path.is_dir()]
        return sorted(f"{path.relative_to(self._root).as_posix()}/" for path in folders)


def signed_listing(
    gateway: StorageGateway, prefix: str, ttl_seconds: int = DOWNLOAD_URL_TTL_SECONDS
) -> List[Tuple[str, SignedUrl]]:
    """Every object under ``prefix`` as ``(file name, signed download)`` pairs."""
    return [
        (key.rsplit("/", 1)[-1], gateway.sign_download(key, ttl_seconds))
        for key in gateway.list_objects(prefix)
    ]


@lru_cache
def get_storage_gateway() -> StorageGateway:
    """Configured storage backend (FastAPI dependency)."""
    if USE_AZURE:
        return AzureBlobGateway(AZ_CONN, AZ_CONTAINER)
    os.makedirs(LOCAL_UPLOAD_DIR, exist_ok=True)
    return LocalDiskGateway(LOCAL_UPLOAD_DIR, BASE_URL)
