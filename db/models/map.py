"""ORM model for the maps table."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from db.base import Base


class Map(Base):
    """Map metadata and the storage keys of its assets.

    Each asset role owns exactly one nullable column; the column names are
    referenced by ``services.assets.roles.AssetRole``.
    """

    __tablename__ = "maps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    slug = Column(String(255), nullable=False, unique=True)
    location = Column(String(255), nullable=True)
    is_published = Column(Boolean, nullable=False, server_default=text("false"), default=False)

    # Base GeoJSON files
    urban_geojson_url = Column(Text, nullable=True)
    roads_geojson_url = Column(Text, nullable=True)
    water_geojson_url = Column(Text, nullable=True)
    buildings_geojson_url = Column(Text, nullable=True)
    green_areas_geojson_url = Column(Text, nullable=True)
    pois_geojson_url = Column(Text, nullable=True)

    # Rendered outputs
    rendered_image_url = Column(Text, nullable=True)
    pdf_export_url = Column(Text, nullable=True)

    # Pictos and logos folders
    pictos_folder_url = Column(Text, nullable=True)
    logos_folder_url = Column(Text, nullable=True)

    # Data, style, legend and preview image
    data_file_url = Column(Text, nullable=True)
    style_file_url = Column(Text, nullable=True)
    legend_file_url = Column(Text, nullable=True)
    image_file_url = Column(Text, nullable=True)

    # Ad hoc layers: name -> GeoJSON object or storage key
    geojson_layers = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
