import uuid

import pytest

from models import Vehicle, VehicleImage, ImageType
from services.errors import BadRequest, Conflict, NotFound

VIN = "1HGCM82633A004352"
OTHER_VIN = "2T1BURHE0JC043821"


@pytest.fixture
def vehicles(ctx):
    return ctx.vehicles


def _create(vehicles, store, stock, vin=VIN):
    return vehicles.create_vehicle({"storeId": str(store.id), "stockNumber": stock, "vin": vin})


# ───────────── Create ─────────────────────────────────────────────────────────
def test_create_vehicle(vehicles, store):
    created = _create(vehicles, store, " STK-2 ", vin="2t1burhe0jc043821")
    assert created["stockNumber"] == "STK-2"
    assert created["vin"] == OTHER_VIN
    assert created["processingStatus"] == "NOT_STARTED"
    assert created["images"] == []


def test_create_vehicle_validation(vehicles, store):
    with pytest.raises(BadRequest, match="required"):
        vehicles.create_vehicle({"stockNumber": "STK-2"})
    with pytest.raises(BadRequest, match="exactly 17"):
        _create(vehicles, store, "STK-2", vin="ABC")
    with pytest.raises(BadRequest, match="Invalid store ID"):
        vehicles.create_vehicle({"storeId": "nope", "stockNumber": "STK-2", "vin": VIN})
    with pytest.raises(NotFound):
        vehicles.create_vehicle({"storeId": str(uuid.uuid4()), "stockNumber": "STK-2", "vin": VIN})


def test_duplicate_stock_number_in_store_conflicts(vehicles, store, vehicle):
    with pytest.raises(Conflict, match="already exists in this store"):
        _create(vehicles, store, vehicle.stock_number)


def test_same_stock_number_in_other_store(vehicles, ctx, vehicle):
    other = ctx.stores.create_store({"name": "Uptown"})
    created = vehicles.create_vehicle({"storeId": other["id"], "stockNumber": vehicle.stock_number, "vin": VIN})
    assert created["storeId"] == other["id"]


# ───────────── Update ─────────────────────────────────────────────────────────
def test_update_vehicle(vehicles, vehicle):
    updated = vehicles.update_vehicle(vehicle.id, {
        "stockNumber": "STK-9", "vin": OTHER_VIN, "processingStatus": "COMPLETED",
    })
    assert (updated["stockNumber"], updated["vin"], updated["processingStatus"]) == ("STK-9", OTHER_VIN, "COMPLETED")


def test_update_vehicle_errors(vehicles, store, vehicle):
    _create(vehicles, store, "STK-2")
    with pytest.raises(Conflict):
        vehicles.update_vehicle(vehicle.id, {"stockNumber": "STK-2"})
    with pytest.raises(BadRequest):
        vehicles.update_vehicle(vehicle.id, {"stockNumber": " "})
    with pytest.raises(BadRequest):
        vehicles.update_vehicle(vehicle.id, {"vin": "1HGCM82633O004352"})
    with pytest.raises(BadRequest, match="processingStatus"):
        vehicles.update_vehicle(vehicle.id, {"processingStatus": "DONE"})
    with pytest.raises(NotFound):
        vehicles.update_vehicle(uuid.uuid4(), {"stockNumber": "X"})
    # keeping its own stock number is fine
    assert vehicles.update_vehicle(vehicle.id, {"stockNumber": vehicle.stock_number})["id"] == str(vehicle.id)


# ───────────── List ───────────────────────────────────────────────────────────
def test_list_vehicles_paginates_and_sorts(vehicles, store):
    for stock in ("C-3", "A-1", "B-2"):
        _create(vehicles, store, stock)

    first = vehicles.list_vehicles(store.id, page=1, limit=2, sort_by="stockNumber", sort_order="asc")
    assert [v["stockNumber"] for v in first["data"]] == ["A-1", "B-2"]
    assert (first["totalCount"], first["currentPage"], first["totalPages"]) == (3, 1, 2)

    second = vehicles.list_vehicles(store.id, page="2", limit="2", sort_by="stockNumber", sort_order="asc")
    assert [v["stockNumber"] for v in second["data"]] == ["C-3"]

    desc = vehicles.list_vehicles(store.id, sort_by="stockNumber", sort_order="desc")
    assert [v["stockNumber"] for v in desc["data"]] == ["C-3", "B-2", "A-1"]


def test_list_vehicles_search_is_case_insensitive(vehicles, store):
    _create(vehicles, store, "TRK-100")
    _create(vehicles, store, "car-200")
    found = vehicles.list_vehicles(store.id, search="CAR")
    assert [v["stockNumber"] for v in found["data"]] == ["car-200"]


def test_list_vehicles_scoped_to_store(vehicles, ctx, vehicle):
    other = ctx.stores.create_store({"name": "Uptown"})
    assert vehicles.list_vehicles(uuid.UUID(other["id"]))["totalCount"] == 0
    with pytest.raises(BadRequest):
        vehicles.list_vehicles(vehicle.store_id, page=0)


# ───────────── Delete ─────────────────────────────────────────────────────────
def test_delete_vehicle_removes_images_and_blobs(vehicles, session_factory, vehicle, add_image, container):
    add_image(vehicle.id, ImageType.FRONT, original_path="stores/s/front.jpg", thumbnail_path="stores/s/t.jpg")
    add_image(vehicle.id, ImageType.GALLERY, original_path="stores/s/g.jpg")

    assert vehicles.delete_vehicle(vehicle.id) is True

    with session_factory() as db:
        assert db.get(Vehicle, vehicle.id) is None
        assert db.query(VehicleImage).count() == 0
    deleted = {c.args[0] for c in container.delete_blob.call_args_list}
    assert deleted == {"stores/s/front.jpg", "stores/s/t.jpg", "stores/s/g.jpg"}
    assert vehicles.delete_vehicle(vehicle.id) is False


def test_bulk_delete_survives_blob_failures(vehicles, session_factory, store, vehicle, add_image, container):
    other = _create(vehicles, store, "STK-2")
    add_image(vehicle.id, ImageType.FRONT, original_path="stores/s/front.jpg")
    container.delete_blob.side_effect = RuntimeError("storage down")

    count = vehicles.bulk_delete([str(vehicle.id), other["id"], str(uuid.uuid4())])

    assert count == 2
    container.delete_blob.assert_called_once_with("stores/s/front.jpg", delete_snapshots="include")
    with session_factory() as db:
        assert db.query(Vehicle).count() == 0


@pytest.mark.parametrize("ids", [None, [], "abc", ["not-a-uuid"]])
def test_bulk_delete_validation(vehicles, ids):
    with pytest.raises(BadRequest, match="vehicleIds"):
        vehicles.bulk_delete(ids)
