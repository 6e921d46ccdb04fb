"""Deterministic storage keys for map assets.

Keys are computed from the map id, the asset role and the uploaded filename
alone, without consulting storage::

    maps/<id>/data.geojson          canonical name, client filename ignored
    maps/<id>/rendered.png          canonical stem, extension kept
    maps/<id>/pictos/<filename>     folder roles keep the sanitized filename
    maps/<id>/layers/<name>.geojson ad hoc layers

Canonical roles never trust the client's stem, so re-uploading a role
overwrites the same object.
"""

from dataclasses import dataclass

from core.errors import ValidationError
from services.assets.roles import AssetKind, AssetRole
from utility.string_methods import clean_allow, file_extension, sanitize_filename

MAP_NAMESPACE_ROOT = "maps"
LAYER_FOLDER = "layers"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "geojson": "application/json",
    "json": "application/json",
}


@dataclass(frozen=True)
class AssetKey:
    key: str
    content_type: str


def content_type_for(filename: str) -> str:
    """MIME type presented to storage for ``filename``."""
    return CONTENT_TYPES.get(file_extension(filename), DEFAULT_CONTENT_TYPE)


def map_namespace(map_id: int) -> str:
    return f"{MAP_NAMESPACE_ROOT}/{map_id}"


def folder_key(map_id: int, role: AssetRole) -> str:
    """Prefix under which a folder role stores its files (trailing slash included)."""
    if not role.is_folder:
        raise ValidationError(f"File type '{role.value}' is not a folder")
    return f"{map_namespace(map_id)}/{role.stem}/"


def _checked_extension(filename: str, accepted) -> str:
    extension = file_extension(filename or "")
    if not extension:
        raise ValidationError("Invalid filename format: a file extension is required")
    if extension not in accepted:
        allowed = ", ".join(sorted(accepted))
        raise ValidationError(
            f"Unsupported file extension '.{extension}'. Allowed extensions: {allowed}"
        )
    return extension


def derive_key(map_id: int, role: AssetRole, filename: str) -> AssetKey:
    """Storage key and content type for uploading ``filename`` as ``role`` of a map."""
    extension = _checked_extension(filename, role.kind.accepted_extensions)

    if role.kind is AssetKind.FOLDER:
        name = sanitize_filename(filename)
        return AssetKey(f"{folder_key(map_id, role)}{name}", content_type_for(name))

    name = f"{role.stem}.{role.kind.canonical_extension(extension)}"
    return AssetKey(f"{map_namespace(map_id)}/{name}", content_type_for(name))


def derive_layer_key(map_id: int, layer_name: str, filename: str) -> AssetKey:
    """Storage key for an ad hoc GeoJSON layer of a map."""
    _checked_extension(filename, AssetKind.GEOJSON.accepted_extensions)
    name = clean_allow(layer_name)
    if not name:
        raise ValidationError("Layer name must contain letters or digits")
    key = f"{map_namespace(map_id)}/{LAYER_FOLDER}/{name}.geojson"
    return AssetKey(key, CONTENT_TYPES["geojson"])


def is_within_namespace(map_id: int, key: str) -> bool:
    """True when ``key`` addresses an object under the map's namespace."""
    if not key:
        return False
    prefix = f"{map_namespace(map_id)}/"
    segments = key.split("/")
    if any(segment in {"", ".", ".."} for segment in segments[:-1]) or ".." in segments:
        return False
    return key.startswith(prefix) and len(key) > len(prefix)
