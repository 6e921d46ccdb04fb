"""Closed set of asset roles a map can reference, and the kinds of file they hold."""

from enum import Enum
from typing import FrozenSet, Optional

from core.errors import ValidationError

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "webp", "svg"})


class AssetKind(str, Enum):
    """What a role stores; decides accepted uploads and the canonical extension."""

    GEOJSON = "geojson"
    JSON = "json"
    IMAGE = "image"
    DOCUMENT = "document"
    FOLDER = "folder"

    @property
    def accepted_extensions(self) -> FrozenSet[str]:
        if self is AssetKind.GEOJSON:
            return frozenset({"geojson", "json"})
        if self is AssetKind.JSON:
            return frozenset({"json"})
        if self is AssetKind.DOCUMENT:
            return frozenset({"pdf"})
        return IMAGE_EXTENSIONS

    def canonical_extension(self, extension: str) -> Optional[str]:
        """Extension stored for an upload with ``extension``.

        ``None`` means the kind keeps the client's own filename (folders).
        """
        if self is AssetKind.GEOJSON:
            return "geojson"
        if self is AssetKind.JSON:
            return "json"
        if self is AssetKind.DOCUMENT:
            return "pdf"
        if self is AssetKind.IMAGE:
            return "jpg" if extension == "jpeg" else extension
        return None


class AssetRole(str, Enum):
    """A named slot on a map holding one storage key.

    Every member declares its wire name, the ``Map`` column it is written to,
    its kind and the fixed file stem used for its key.
    """

    # wire name, column, kind, stem
    DATA = ("data", "data_file_url", AssetKind.GEOJSON, "data")
    STYLE = ("style", "style_file_url", AssetKind.JSON, "style")
    LEGEND = ("legend", "legend_file_url", AssetKind.JSON, "legend")
    IMAGE = ("image", "image_file_url", AssetKind.IMAGE, "image")
    URBAN = ("urban", "urban_geojson_url", AssetKind.GEOJSON, "urban")
    ROADS = ("roads", "roads_geojson_url", AssetKind.GEOJSON, "roads")
    WATER = ("water", "water_geojson_url", AssetKind.GEOJSON, "water")
    BUILDINGS = ("buildings", "buildings_geojson_url", AssetKind.GEOJSON, "buildings")
    GREEN = ("green", "green_areas_geojson_url", AssetKind.GEOJSON, "green")
    POIS = ("pois", "pois_geojson_url", AssetKind.GEOJSON, "pois")
    RENDERED = ("rendered", "rendered_image_url", AssetKind.IMAGE, "rendered")
    PDF = ("pdf", "pdf_export_url", AssetKind.DOCUMENT, "export")
    PICTOS = ("pictos", "pictos_folder_url", AssetKind.FOLDER, "pictos")
    LOGOS = ("logos", "logos_folder_url", AssetKind.FOLDER, "logos")

    def __new__(cls, value: str, column: str, kind: AssetKind, stem: str):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.column = column
        obj.kind = kind
        obj.stem = stem
        return obj

    @property
    def is_folder(self) -> bool:
        return self.kind is AssetKind.FOLDER

    @classmethod
    def parse(cls, name: Optional[str]) -> "AssetRole":
        """Resolve a client-supplied role name; unknown names are rejected."""
        normalized = (name or "").strip().lower()
        for role in cls:
            if role.value == normalized:
                return role
        allowed = ", ".join(role.value for role in cls)
        raise ValidationError(f"Invalid file type '{name}'. Allowed types: {allowed}")

    @classmethod
    def for_kind(cls, kind: AssetKind) -> list["AssetRole"]:
        return [role for role in cls if role.kind is kind]


class RoleClass(str, Enum):
    """Group of roles a batch upload targets."""

    GEOJSON = "geojson"
    PICTOS = "pictos"
    LOGOS = "logos"

    @classmethod
    def parse(cls, name: Optional[str]) -> "RoleClass":
        normalized = (name or "").strip().lower()
        for role_class in cls:
            if role_class.value == normalized:
                return role_class
        allowed = ", ".join(role_class.value for role_class in cls)
        raise ValidationError(f"Invalid role class '{name}'. Allowed classes: {allowed}")
