"""Create users and maps tables."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20250401_create_users_maps"
down_revision = None
branch_labels = None
depends_on = None

ASSET_COLUMNS = [
    "urban_geojson_url",
    "roads_geojson_url",
    "water_geojson_url",
    "buildings_geojson_url",
    "green_areas_geojson_url",
    "pois_geojson_url",
    "rendered_image_url",
    "pdf_export_url",
    "pictos_folder_url",
    "logos_folder_url",
    "data_file_url",
    "style_file_url",
    "legend_file_url",
    "image_file_url",
]


def _has_table(conn, table_name: str) -> bool:
    inspector = sa.inspect(conn)
    return inspector.has_table(table_name)


def _timestamps():
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade():
    conn = op.get_bind()
    if not _has_table(conn, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("username", sa.String(100), nullable=False),
            sa.Column("email", sa.String(255), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            *_timestamps(),
        )

    if not _has_table(conn, "maps"):
        op.create_table(
            "maps",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("slug", sa.String(255), nullable=False, unique=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column(
                "is_published", sa.Boolean(), nullable=False, server_default=sa.text("false")
            ),
            *[sa.Column(name, sa.Text(), nullable=True) for name in ASSET_COLUMNS],
            sa.Column(
                "geojson_layers",
                sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
                nullable=True,
            ),
            *_timestamps(),
        )
        op.create_index("ix_maps_user_id", "maps", ["user_id"])


def downgrade():
    op.drop_index("ix_maps_user_id", table_name="maps")
    op.drop_table("maps")
    op.drop_table("users")
