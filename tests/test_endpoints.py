from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmplot import models
from farmplot.db import Base, get_db
from farmplot.main import app

TENANT = str(uuid.uuid4())
OTHER_TENANT = str(uuid.uuid4())

SQUARE = [[36.80, -1.30], [36.81, -1.30], [36.81, -1.29], [36.80, -1.29], [36.80, -1.30]]


def headers(tenant: str = TENANT) -> dict:
    return {"X-Tenant-ID": tenant}


def farm_body(**overrides) -> dict:
    body = {
        "farmName": "Green Acres",
        "ownerReferenceId": str(uuid.uuid4()),
        "countryCode": "KE",
        "region": "Central",
        "generalLocationCoordinates": {"type": "Point", "coordinates": [36.8219, -1.2921]},
        "notes": "Irrigated",
    }
    body.update(overrides)
    return body


@pytest.fixture
def api_client():
    """FastAPI TestClient wired to an isolated in-memory SQLite DB."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    # no context manager: the lifespan would create tables on the configured database
    client = TestClient(app)
    yield client, TestingSessionLocal

    app.dependency_overrides.clear()


def create_farm(client, tenant: str = TENANT, **overrides) -> dict:
    r = client.post("/farms", json=farm_body(**overrides), headers=headers(tenant))
    assert r.status_code == 201, r.text
    return r.json()


def create_plot(client, farm_id: str, tenant: str = TENANT, name: str = "Plot A") -> dict:
    body = {"farmIdentifier": farm_id, "plotName": name, "plotGeometry": {"type": "Polygon", "coordinates": [SQUARE]}}
    r = client.post("/plots", json=body, headers=headers(tenant))
    assert r.status_code == 201, r.text
    return r.json()


def test_health(api_client):
    client, _ = api_client
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "database": "connected"}


def test_create_and_get_farm_camel_case(api_client):
    """Wire format is camelCase and carries audit fields."""
    client, _ = api_client
    farm = create_farm(client)

    assert set(farm) >= {"farmIdentifier", "farmName", "tenantId", "createdAt", "updatedAt", "version"}
    assert farm["tenantId"] == TENANT
    assert farm["generalLocationCoordinates"] == {"type": "Point", "coordinates": [36.8219, -1.2921]}

    r = client.get(f"/farms/{farm['farmIdentifier']}", headers=headers())
    assert r.status_code == 200
    assert r.json()["farmName"] == "Green Acres"


def test_missing_tenant_header_is_400(api_client):
    client, _ = api_client
    r = client.post("/farms", json=farm_body())
    assert r.status_code == 400
    body = r.json()
    assert body["status"] == 400
    assert body["error"] == "Bad Request"
    assert body["path"] == "/farms"
    assert body["validationErrors"]


def test_malformed_tenant_header_is_400(api_client):
    client, _ = api_client
    r = client.get("/farms", headers=headers("not-a-uuid"))
    assert r.status_code == 400


def test_invalid_body_lists_field_errors(api_client):
    client, _ = api_client
    r = client.post("/farms", json=farm_body(farmName="", countryCode="KEN"), headers=headers())

    assert r.status_code == 400
    errors = r.json()["validationErrors"]
    assert any(e.startswith("farmName:") for e in errors)
    assert any(e.startswith("countryCode:") for e in errors)


def test_unknown_farm_is_404_with_error_payload(api_client):
    client, _ = api_client
    missing = uuid.uuid4()
    r = client.get(f"/farms/{missing}", headers=headers())

    assert r.status_code == 404
    body = r.json()
    assert body["message"] == f"Farm not found with identifier: {missing}"
    assert body["error"] == "Not Found"
    assert "timestamp" in body
    assert "validationErrors" not in body


def test_farm_of_other_tenant_is_404(api_client):
    client, _ = api_client
    farm = create_farm(client)
    r = client.get(f"/farms/{farm['farmIdentifier']}", headers=headers(OTHER_TENANT))
    assert r.status_code == 404


def test_list_farms_page_payload(api_client):
    client, _ = api_client
    for name in ["Charlie", "Alpha", "Bravo"]:
        create_farm(client, farmName=name)

    r = client.get("/farms", params={"size": 2, "sort": "farmName,desc"}, headers=headers())

    assert r.status_code == 200
    page = r.json()
    assert [f["farmName"] for f in page["content"]] == ["Charlie", "Bravo"]
    assert page["totalElements"] == 3
    assert page["totalPages"] == 2
    assert page["number"] == 0
    assert page["size"] == 2


def test_list_farms_filter_by_country(api_client):
    client, _ = api_client
    create_farm(client, countryCode="UG")
    create_farm(client, countryCode="KE")

    r = client.get("/farms", params={"countryCode": "UG"}, headers=headers())

    assert [f["countryCode"] for f in r.json()["content"]] == ["UG"]


def test_bad_sort_field_is_400(api_client):
    client, _ = api_client
    r = client.get("/farms", params={"sort": "password"}, headers=headers())
    assert r.status_code == 400


def test_update_farm_without_notes_clears_notes(api_client):
    """PUT without notes clears them; PUT without region keeps it."""
    client, _ = api_client
    farm = create_farm(client, region="R", notes="N")

    r = client.put(f"/farms/{farm['farmIdentifier']}", json={"farmName": "Renamed"}, headers=headers())

    assert r.status_code == 200
    body = r.json()
    assert body["farmName"] == "Renamed"
    assert body["region"] == "R"
    assert body["notes"] is None
    assert body["version"] == farm["version"] + 1


def test_update_farm_with_stale_version_is_409(api_client):
    client, _ = api_client
    farm = create_farm(client)
    client.put(f"/farms/{farm['farmIdentifier']}", json={"region": "x"}, headers=headers())

    r = client.put(
        f"/farms/{farm['farmIdentifier']}", json={"region": "y", "version": farm["version"]}, headers=headers()
    )

    assert r.status_code == 409
    assert r.json()["error"] == "Conflict"


def test_delete_farm_cascades(api_client):
    client, SessionLocal = api_client
    farm = create_farm(client)
    plot = create_plot(client, farm["farmIdentifier"])
    poi = {"poiType": "BUILDING", "coordinates": {"type": "Point", "coordinates": [36.805, -1.295]}}
    assert client.post(f"/plots/{plot['plotIdentifier']}/pois", json=poi, headers=headers()).status_code == 201

    r = client.delete(f"/farms/{farm['farmIdentifier']}", headers=headers())

    assert r.status_code == 204
    assert client.get(f"/plots/{plot['plotIdentifier']}", headers=headers()).status_code == 404
    with SessionLocal() as session:
        assert session.query(models.PointOfInterest).count() == 0


def test_create_plot_scenario(api_client):
    """KE farm + square polygon -> 201 with a positive area and no tenure type."""
    client, _ = api_client
    farm = create_farm(client)

    plot = create_plot(client, farm["farmIdentifier"])

    assert plot["farmIdentifier"] == farm["farmIdentifier"]
    assert plot["calculatedAreaHectares"] > 0
    assert plot["landTenureType"] is None
    assert plot["plotGeometry"]["coordinates"] == [SQUARE]


def test_create_plot_for_missing_farm_is_404(api_client):
    client, SessionLocal = api_client
    body = {"farmIdentifier": str(uuid.uuid4()), "plotGeometry": {"type": "Polygon", "coordinates": [SQUARE]}}

    r = client.post("/plots", json=body, headers=headers())

    assert r.status_code == 404
    with SessionLocal() as session:
        assert session.query(models.Plot).count() == 0


def test_plot_area_not_accepted_from_request(api_client):
    client, _ = api_client
    farm = create_farm(client)
    body = {
        "farmIdentifier": farm["farmIdentifier"],
        "plotGeometry": {"type": "Polygon", "coordinates": [SQUARE]},
        "calculatedAreaHectares": 9999.0,
        "landTenureType": "OWNED",
    }

    plot = client.post("/plots", json=body, headers=headers()).json()

    assert plot["calculatedAreaHectares"] != 9999.0
    assert plot["landTenureType"] is None


def test_list_plots_by_farm(api_client):
    client, _ = api_client
    farm = create_farm(client)
    other = create_farm(client, farmName="Other")
    create_plot(client, farm["farmIdentifier"], name="mine")
    create_plot(client, other["farmIdentifier"], name="theirs")

    r = client.get("/plots", params={"farmIdentifier": farm["farmIdentifier"]}, headers=headers())

    assert [p["plotName"] for p in r.json()["content"]] == ["mine"]
    assert client.get("/plots", headers=headers()).json()["totalElements"] == 2


def test_land_tenure_lifecycle(api_client):
    """404 before, PUT creates and mirrors the type, DELETE clears it."""
    client, _ = api_client
    farm = create_farm(client)
    plot = create_plot(client, farm["farmIdentifier"])
    url = f"/plots/{plot['plotIdentifier']}/land-tenure"

    r = client.get(url, headers=headers())
    assert r.status_code == 404
    assert r.json()["message"] == f"LandTenure for Plot not found with identifier: {plot['plotIdentifier']}"

    body = {"tenureType": "LEASED", "leaseStartDate": "2024-01-01", "leaseEndDate": "2026-12-31"}
    r = client.put(url, json=body, headers=headers())
    assert r.status_code == 200
    assert r.json()["tenureType"] == "LEASED"
    assert client.put(url, json=body, headers=headers()).status_code == 200

    plot_now = client.get(f"/plots/{plot['plotIdentifier']}", headers=headers()).json()
    assert plot_now["landTenureType"] == "LEASED"

    assert client.delete(url, headers=headers()).status_code == 204
    plot_now = client.get(f"/plots/{plot['plotIdentifier']}", headers=headers()).json()
    assert plot_now["landTenureType"] is None
    assert client.delete(url, headers=headers()).status_code == 404


def test_land_tenure_dates_out_of_order_is_400(api_client):
    client, _ = api_client
    farm = create_farm(client)
    plot = create_plot(client, farm["farmIdentifier"])

    r = client.put(
        f"/plots/{plot['plotIdentifier']}/land-tenure",
        json={"tenureType": "LEASED", "leaseStartDate": "2025-01-01", "leaseEndDate": "2024-01-01"},
        headers=headers(),
    )

    assert r.status_code == 400


def test_land_tenure_of_unknown_plot_is_404(api_client):
    client, _ = api_client
    create_farm(client)
    plot_id = str(uuid.uuid4())

    for method in (client.get, client.delete):
        r = method(f"/plots/{plot_id}/land-tenure", headers=headers())
        assert r.status_code == 404
        assert "LandTenure for Plot" in r.json()["message"]


def test_land_tenure_partial_update_keeps_dates_in_order(api_client):
    """{start 2025, end 2026} then {end 2020} -> 400 and the stored lease is untouched."""
    client, _ = api_client
    farm = create_farm(client)
    plot = create_plot(client, farm["farmIdentifier"])
    url = f"/plots/{plot['plotIdentifier']}/land-tenure"
    body = {"tenureType": "LEASED", "leaseStartDate": "2025-01-01", "leaseEndDate": "2026-01-01"}
    assert client.put(url, json=body, headers=headers()).status_code == 200

    r = client.put(url, json={"tenureType": "LEASED", "leaseEndDate": "2020-01-01"}, headers=headers())

    assert r.status_code == 400
    assert r.json()["message"] == "leaseEndDate must not be before leaseStartDate"
    stored = client.get(url, headers=headers()).json()
    assert stored["leaseStartDate"] == "2025-01-01"
    assert stored["leaseEndDate"] == "2026-01-01"


def test_list_plots_by_cultivator(api_client):
    client, _ = api_client
    farm = create_farm(client)
    cultivator = str(uuid.uuid4())
    body = {
        "farmIdentifier": farm["farmIdentifier"],
        "plotName": "tended",
        "cultivatorReferenceId": cultivator,
        "plotGeometry": {"type": "Polygon", "coordinates": [SQUARE]},
    }
    assert client.post("/plots", json=body, headers=headers()).status_code == 201
    create_plot(client, farm["farmIdentifier"], name="fallow")

    r = client.get("/plots", params={"cultivatorReferenceId": cultivator}, headers=headers())

    assert r.status_code == 200
    assert [p["plotName"] for p in r.json()["content"]] == ["tended"]


def test_plot_with_position_missing_latitude_is_400(api_client):
    client, SessionLocal = api_client
    farm = create_farm(client)
    shell = SQUARE[:2] + [[36.81]] + SQUARE[2:]
    body = {"farmIdentifier": farm["farmIdentifier"], "plotGeometry": {"type": "Polygon", "coordinates": [shell]}}

    r = client.post("/plots", json=body, headers=headers())

    assert r.status_code == 400
    assert r.json()["validationErrors"] == ["coordinates[2]: expected [lon, lat], got [36.81]"]
    with SessionLocal() as session:
        assert session.query(models.Plot).count() == 0


def test_poi_routes(api_client):
    client, _ = api_client
    farm = create_farm(client)
    poi_body = {"poiName": "Well", "poiType": "WATER_SOURCE", "coordinates": {"type": "Point", "coordinates": [36.8, -1.3]}}

    r = client.post(f"/farms/{farm['farmIdentifier']}/pois", json=poi_body, headers=headers())
    assert r.status_code == 201
    poi = r.json()
    assert poi["parentEntityType"] == "FARM"
    assert poi["parentEntityIdentifier"] == farm["farmIdentifier"]

    gate = dict(poi_body, poiName="Gate", poiType="ACCESS_POINT")
    client.post(f"/farms/{farm['farmIdentifier']}/pois", json=gate, headers=headers())

    listed = client.get(f"/farms/{farm['farmIdentifier']}/pois", params={"poiType": "ACCESS_POINT"}, headers=headers())
    assert [p["poiName"] for p in listed.json()] == ["Gate"]

    r = client.put(f"/pois/{poi['poiIdentifier']}", json={"notes": "deep"}, headers=headers())
    assert r.status_code == 200
    assert r.json()["notes"] == "deep"

    assert client.delete(f"/pois/{poi['poiIdentifier']}", headers=headers()).status_code == 204
    assert client.get(f"/pois/{poi['poiIdentifier']}", headers=headers()).status_code == 404


def test_poi_on_foreign_farm_is_404(api_client):
    client, _ = api_client
    farm = create_farm(client, tenant=OTHER_TENANT)
    poi_body = {"poiType": "HAZARD", "coordinates": {"type": "Point", "coordinates": [36.8, -1.3]}}

    r = client.post(f"/farms/{farm['farmIdentifier']}/pois", json=poi_body, headers=headers())

    assert r.status_code == 404


def test_poi_without_coordinates_is_400(api_client):
    client, _ = api_client
    farm = create_farm(client)
    r = client.post(f"/farms/{farm['farmIdentifier']}/pois", json={"poiType": "HAZARD"}, headers=headers())
    assert r.status_code == 400


def test_spatial_routes(api_client):
    client, _ = api_client
    farm = create_farm(client)
    plot = create_plot(client, farm["farmIdentifier"])
    poi_body = {"poiType": "SOIL_SENSOR", "coordinates": {"type": "Point", "coordinates": [36.805, -1.295]}}
    client.post(f"/plots/{plot['plotIdentifier']}/pois", json=poi_body, headers=headers())

    plots = client.get("/plots/intersecting", params={"bbox": "36.7,-1.4,36.9,-1.2"}, headers=headers())
    pois = client.get("/pois/within", params={"bbox": "36.7,-1.4,36.9,-1.2"}, headers=headers())

    assert [p["plotIdentifier"] for p in plots.json()] == [plot["plotIdentifier"]]
    assert len(pois.json()) == 1
    assert client.get("/pois/within", params={"bbox": "36.7,-1.4,36.9,-1.2"}, headers=headers(OTHER_TENANT)).json() == []
    assert client.get("/plots/intersecting", params={"bbox": "1,2"}, headers=headers()).status_code == 400


def test_malformed_identifier_is_400(api_client):
    client, _ = api_client
    assert client.get("/farms/123", headers=headers()).status_code == 400


def test_unexpected_error_is_500_without_details(api_client):
    client, _ = api_client
    from farmplot.deps import get_farm_service

    class Exploding:
        def get(self, *args, **kwargs):
            raise RuntimeError("secret internals")

    app.dependency_overrides[get_farm_service] = lambda: Exploding()
    quiet = TestClient(app, raise_server_exceptions=False)

    r = quiet.get(f"/farms/{uuid.uuid4()}", headers=headers())

    assert r.status_code == 500
    assert "secret internals" not in r.text
