"""Tests for map records and the asset keys recorded on them."""

import pytest

from core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from models.map import MapCreate, MapUpdate
from services import registry
from services.access import Principal
from services.registry import IncomingFile

GEOJSON = b'{"type": "FeatureCollection", "features": []}'


async def _refetch(db, map_id, principal):
    return await registry.get_map(db, map_id, principal)


# Map metadata


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_map_derives_slug_from_title(db, owner_principal):
    map_obj = await registry.create_map(
        db, owner_principal, MapCreate(title="Downtown Tour — 2024!")
    )
    assert map_obj.slug == "downtown-tour-2024"
    assert map_obj.user_id == owner_principal.id
    assert map_obj.is_published is False
    assert map_obj.data_file_url is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_duplicate_slug_is_a_conflict(db, owner_principal, stranger_principal):
    await registry.create_map(db, owner_principal, MapCreate(title="Harbour", slug="harbour"))
    with pytest.raises(ConflictError):
        await registry.create_map(
            db, stranger_principal, MapCreate(title="Other", slug="Harbour!")
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_slug_without_letters_is_rejected(db, owner_principal):
    with pytest.raises(ValidationError):
        await registry.create_map(db, owner_principal, MapCreate(title="???"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_map(db, owner, owner_principal, make_map):
    await make_map(owner, "taken")
    map_obj = await make_map(owner, "old-town")

    updated = await registry.update_map(
        db, map_obj.id, owner_principal, MapUpdate(title="Old Town", is_published=True)
    )
    assert updated.title == "Old Town"
    assert updated.is_published is True
    assert updated.slug == "old-town"

    with pytest.raises(ConflictError):
        await registry.update_map(db, map_obj.id, owner_principal, MapUpdate(slug="taken"))
    with pytest.raises(ValidationError):
        await registry.update_map(db, map_obj.id, owner_principal, MapUpdate(title=None))
    with pytest.raises(ValidationError):
        await registry.update_map(db, map_obj.id, owner_principal, MapUpdate())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_by_non_owner(db, owner, stranger_principal, make_map):
    private = await make_map(owner, "private")
    public = await make_map(owner, "public", is_published=True)

    with pytest.raises(NotFoundError):
        await registry.update_map(db, private.id, stranger_principal, MapUpdate(title="x"))
    with pytest.raises(ForbiddenError):
        await registry.update_map(db, public.id, stranger_principal, MapUpdate(title="x"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_admin_can_update_any_map(db, owner, admin_principal, make_map):
    map_obj = await make_map(owner, "moderated")
    updated = await registry.update_map(
        db, map_obj.id, admin_principal, MapUpdate(description="Reviewed")
    )
    assert updated.description == "Reviewed"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delete_map(db, owner, owner_principal, stranger_principal, make_map):
    map_obj = await make_map(owner, "to-delete", is_published=True)

    with pytest.raises(ForbiddenError):
        await registry.delete_map(db, map_obj.id, stranger_principal)

    await registry.delete_map(db, map_obj.id, owner_principal)
    with pytest.raises(NotFoundError):
        await registry.get_map(db, map_obj.id, owner_principal)


# Visibility


@pytest.mark.unit
@pytest.mark.asyncio
async def test_private_map_is_masked_as_not_found(db, owner, stranger_principal, make_map):
    map_obj = await make_map(owner, "secret")

    with pytest.raises(NotFoundError) as hidden:
        await registry.get_map(db, map_obj.id, stranger_principal)
    with pytest.raises(NotFoundError) as missing:
        await registry.get_map(db, map_obj.id + 100, stranger_principal)
    assert hidden.value.message == missing.value.message

    with pytest.raises(NotFoundError):
        await registry.get_map_by_slug(db, "secret", None)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_maps_visibility(db, owner, stranger, admin_principal, make_map):
    await make_map(owner, "owner-private")
    await make_map(owner, "owner-public", is_published=True)
    await make_map(stranger, "stranger-private")

    async def slugs(principal, **kwargs):
        maps, total = await registry.list_maps(db, principal, **kwargs)
        assert total == len(maps)
        return {item.slug for item in maps}

    assert await slugs(None) == {"owner-public"}
    assert await slugs(Principal.from_user(owner)) == {"owner-private", "owner-public"}
    assert await slugs(admin_principal) == {"owner-private", "owner-public", "stranger-private"}
    assert await slugs(Principal.from_user(owner), published=False) == {"owner-private"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_pagination_newest_first(db, owner, owner_principal, make_map):
    for index in range(5):
        await make_map(owner, f"map-{index}")

    maps, total = await registry.list_user_maps(db, owner_principal, page=2, limit=2)
    assert total == 5
    assert [item.slug for item in maps] == ["map-2", "map-1"]
    assert registry.page_count(total, 2) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_all_maps_requires_admin(db, owner_principal):
    with pytest.raises(ForbiddenError):
        await registry.list_all_maps(db, owner_principal)


# Asset references


@pytest.mark.unit
@pytest.mark.asyncio
async def test_recording_data_then_style_sets_both(db, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "two-roles")
    prefix = f"maps/{map_obj.id}"

    for role, name in [("data", "data.geojson"), ("style", "style.json")]:
        await registry.record_asset_key(db, map_obj.id, role, f"{prefix}/{name}", owner_principal)

    refreshed = await _refetch(db, map_obj.id, owner_principal)
    assert refreshed.data_file_url == f"{prefix}/data.geojson"
    assert refreshed.style_file_url == f"{prefix}/style.json"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_role_leaves_fields_unchanged(db, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "unknown-role")
    key = f"maps/{map_obj.id}/data.geojson"
    await registry.record_asset_key(db, map_obj.id, "data", key, owner_principal)

    with pytest.raises(ValidationError):
        await registry.record_asset_key(db, map_obj.id, "thumbnail", key, owner_principal)

    refreshed = await _refetch(db, map_obj.id, owner_principal)
    assert refreshed.data_file_url == key
    assert refreshed.image_file_url is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_key_outside_map_namespace_is_rejected(db, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "namespaced")
    other = await make_map(owner, "other")

    with pytest.raises(ValidationError):
        await registry.record_asset_key(
            db, map_obj.id, "data", f"maps/{other.id}/data.geojson", owner_principal
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_folder_role_stores_folder_prefix(db, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "folders")
    updated = await registry.record_asset_key(
        db, map_obj.id, "pictos", f"maps/{map_obj.id}/pictos/bus.svg", owner_principal
    )
    assert updated.pictos_folder_url == f"maps/{map_obj.id}/pictos/"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_layer_merges_by_name(db, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "layers")
    trams = "maps/1/layers/trams.geojson"
    await registry.record_layer(db, map_obj.id, "bikes", {"v": 1}, owner_principal)
    await registry.record_layer(db, map_obj.id, "trams", trams, owner_principal)
    updated = await registry.record_layer(db, map_obj.id, "bikes", {"v": 2}, owner_principal)

    assert updated.geojson_layers == {"bikes": {"v": 2}, "trams": trams}

    with pytest.raises(ValidationError):
        await registry.record_layer(db, map_obj.id, "  ", {}, owner_principal)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolve_readable_key(db, owner, owner_principal, make_map):
    public = await make_map(owner, "public-files", is_published=True)
    private = await make_map(owner, "private-files")
    key = f"maps/{public.id}/legend.json"
    await registry.record_asset_key(db, public.id, "legend", key, owner_principal)

    resolved = await registry.resolve_readable_key(db, "public-files", "legend", None)
    assert resolved == key

    # Unset role, hidden map and missing map look the same
    hidden = [("public-files", "style"), ("private-files", "legend"), ("nope", "data")]
    for map_ref, role_name in hidden:
        with pytest.raises(NotFoundError) as exc_info:
            await registry.resolve_readable_key(db, map_ref, role_name, None)
        assert exc_info.value.message == registry.FILE_NOT_FOUND

    with pytest.raises(ValidationError):
        await registry.resolve_readable_key(db, private.id, "thumbnail", owner_principal)


# Batch uploads


@pytest.mark.unit
@pytest.mark.asyncio
async def test_batch_reports_each_file(db, gateway, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "batch")
    files = [
        IncomingFile("data.geojson", GEOJSON),
        IncomingFile("notes.txt", b"hello"),
        IncomingFile("Roads.json", GEOJSON),
    ]

    outcomes = await registry.upload_batch(
        db, gateway, map_obj.id, owner_principal, "geojson", files
    )

    assert [item.success for item in outcomes] == [True, False, True]
    assert "notes.txt" == outcomes[1].filename
    assert outcomes[1].key is None and outcomes[1].error

    refreshed = await _refetch(db, map_obj.id, owner_principal)
    assert refreshed.data_file_url == f"maps/{map_obj.id}/data.geojson"
    assert refreshed.roads_geojson_url == f"maps/{map_obj.id}/roads.geojson"
    assert set(gateway.objects) == {
        f"maps/{map_obj.id}/data.geojson",
        f"maps/{map_obj.id}/roads.geojson",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_batch_storage_failure_is_per_file(db, gateway, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "flaky")
    gateway.fail_keys.add(f"maps/{map_obj.id}/urban.geojson")

    outcomes = await registry.upload_batch(
        db,
        gateway,
        map_obj.id,
        owner_principal,
        "geojson",
        [IncomingFile("urban.geojson", GEOJSON), IncomingFile("water.geojson", GEOJSON)],
    )

    assert [item.success for item in outcomes] == [False, True]
    refreshed = await _refetch(db, map_obj.id, owner_principal)
    assert refreshed.urban_geojson_url is None
    assert refreshed.water_geojson_url == f"maps/{map_obj.id}/water.geojson"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_batch_unrecognised_geojson_becomes_layer(
    db, gateway, owner, owner_principal, make_map
):
    map_obj = await make_map(owner, "ad-hoc")
    files = [IncomingFile("Bike Lanes.geojson", GEOJSON)]
    outcomes = await registry.upload_batch(
        db, gateway, map_obj.id, owner_principal, "geojson", files
    )

    key = f"maps/{map_obj.id}/layers/bike_lanes.geojson"
    assert outcomes[0].key == key
    refreshed = await _refetch(db, map_obj.id, owner_principal)
    assert refreshed.geojson_layers == {"bike_lanes": key}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_batch_folder_upload(db, gateway, owner, owner_principal, make_map):
    map_obj = await make_map(owner, "logos")
    outcomes = await registry.upload_batch(
        db,
        gateway,
        map_obj.id,
        owner_principal,
        "logos",
        [IncomingFile("City Hall.PNG", b"png"), IncomingFile("sponsor.svg", b"<svg/>")],
    )

    assert all(item.success for item in outcomes)
    assert gateway.content_types[f"maps/{map_obj.id}/logos/city_hall.png"] == "image/png"
    refreshed = await _refetch(db, map_obj.id, owner_principal)
    assert refreshed.logos_folder_url == f"maps/{map_obj.id}/logos/"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_batch_limits(db, gateway, owner, owner_principal, make_map, monkeypatch):
    map_obj = await make_map(owner, "limits")
    monkeypatch.setattr(registry, "MAX_FILE_SIZE", 4)
    monkeypatch.setattr(registry, "MAX_BATCH_FILES", 2)

    outcomes = await registry.upload_batch(
        db, gateway, map_obj.id, owner_principal, "geojson", [IncomingFile("data.geojson", GEOJSON)]
    )
    assert not outcomes[0].success
    assert "limit" in outcomes[0].error

    too_many = [IncomingFile(f"f{i}.geojson", b"{}") for i in range(3)]
    with pytest.raises(ValidationError):
        await registry.upload_batch(db, gateway, map_obj.id, owner_principal, "geojson", too_many)
    with pytest.raises(ValidationError):
        await registry.upload_batch(db, gateway, map_obj.id, owner_principal, "geojson", [])
    with pytest.raises(ValidationError):
        await registry.upload_batch(
            db, gateway, map_obj.id, owner_principal, "images", too_many[:1]
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_batch_on_someone_elses_map(db, gateway, owner, stranger_principal, make_map):
    map_obj = await make_map(owner, "not-yours", is_published=True)
    with pytest.raises(ForbiddenError):
        await registry.upload_batch(
            db, gateway, map_obj.id, stranger_principal, "geojson", [IncomingFile("d.json", b"{}")]
        )
    assert gateway.objects == {}
