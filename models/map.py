"""Pydantic models for map CRUD."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MapBase(BaseModel):
    """Shared fields for map payloads."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)

    model_config = ConfigDict(extra="forbid")


class MapCreate(MapBase):
    """Payload for creating a map.

    Asset keys are not accepted here; they are recorded per role once the
    upload has happened.
    """

    slug: Optional[str] = Field(None, max_length=255)
    is_published: bool = False


class MapUpdate(BaseModel):
    """Payload for updating map metadata."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    is_published: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class MapRead(MapBase):
    """Response model for a map."""

    id: int
    slug: str
    user_id: int
    is_published: bool

    urban_geojson_url: Optional[str] = None
    roads_geojson_url: Optional[str] = None
    water_geojson_url: Optional[str] = None
    buildings_geojson_url: Optional[str] = None
    green_areas_geojson_url: Optional[str] = None
    pois_geojson_url: Optional[str] = None
    rendered_image_url: Optional[str] = None
    pdf_export_url: Optional[str] = None
    pictos_folder_url: Optional[str] = None
    logos_folder_url: Optional[str] = None
    data_file_url: Optional[str] = None
    style_file_url: Optional[str] = None
    legend_file_url: Optional[str] = None
    image_file_url: Optional[str] = None
    geojson_layers: Optional[Dict[str, Any]] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="forbid")


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class MapList(BaseModel):
    """A page of maps with pagination metadata."""

    maps: List[MapRead]
    meta: PageMeta
