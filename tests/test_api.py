from datetime import timedelta

from fastapi.testclient import TestClient

from sitequeue.main import create_app

from conftest import SITE_LAT, SITE_LON, device, point_north

INSIDE = point_north(SITE_LAT, SITE_LON, 100)


def generate(client, claim="NY/23A/1234", info=None, addr="10.0.0.1", where=INSIDE, accuracy=10):
    body = {
        "identity_claim": claim,
        "latitude": where[0],
        "longitude": where[1],
        "accuracy": accuracy,
        "device_info": info if info is not None else device(1),
    }
    return client.post("/api/queue/generate", json=body, headers={"X-Forwarded-For": addr})


def test_generate_then_return_existing(client):
    r1 = generate(client)
    assert r1.status_code == 201
    body = r1.json()
    assert body["sequence"] == 1
    assert body["site"] == "Ikeja"
    assert body["status"] == "ACTIVE"
    assert body["day"] == "2026-03-02"
    assert r1.headers["X-Request-ID"]

    r2 = generate(client)
    assert r2.status_code == 200
    assert r2.json()["reference_id"] == body["reference_id"]


def test_coordinates_as_strings(client):
    body = {
        "identity_claim": "NY/23A/1",
        "latitude": str(INSIDE[0]),
        "longitude": str(INSIDE[1]),
        "device_info": device(1),
    }
    r = client.post("/api/queue/generate", json=body, headers={"X-Forwarded-For": "10.0.0.1"})
    assert r.status_code == 201


def test_denials_are_structured(client):
    r = generate(client, claim="not-a-claim")
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_FORMAT"

    r = generate(client, where=point_north(SITE_LAT, SITE_LON, 3000), accuracy=0)
    assert r.status_code == 403
    assert r.json()["error"] == "OUTSIDE_GEOFENCE"
    assert r.json()["details"]["distance_m"] == 3000

    r = generate(client, info={"userAgent": "x"})
    assert r.status_code == 400
    assert r.json()["details"]["missing"] == ["platform", "screenResolution", "timezone"]


def test_wrongly_typed_fields_get_policy_errors(client):
    r = generate(client, claim=12345)
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_FORMAT"

    r = generate(client, where=(True, [3.35]))
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_LOCATION"

    r = generate(client, info="not-a-device")
    assert r.status_code == 400
    assert r.json()["error"] == "INCOMPLETE_DEVICE_INFO"

    # unreadable accuracy counts as no tolerance
    r = generate(client, accuracy="approx")
    assert r.status_code == 201
    assert r.json()["sequence"] == 1


def test_malformed_bodies_are_invalid_format(client):
    r = client.post("/api/queue/generate", json=["NY/23A/1234"])
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_FORMAT"
    assert "detail" not in r.json()

    r = client.post("/api/queue/verify", json={"mark_used": True})
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_FORMAT"
    assert r.json()["fields"] == ["reference_id"]


def test_device_and_identity_conflicts(client):
    assert generate(client, "NY/23A/1", device(1), "10.0.0.1").status_code == 201

    r = generate(client, "NY/23A/2", device(1), "10.0.0.2")
    assert r.status_code == 403
    assert r.json()["error"] == "DEVICE_ALREADY_USED"
    assert r.json()["details"]["existing_sequence"] == 1

    r = generate(client, "NY/23A/1", device(2), "10.0.0.2")
    assert r.status_code == 403
    assert r.json()["error"] == "IDENTITY_ALREADY_USED"


def test_verify_flow(client, clock):
    ref = generate(client).json()["reference_id"]

    r = client.post("/api/queue/verify", json={"reference_id": ref, "mark_used": True})
    assert r.status_code == 200
    assert r.json()["valid"] is True
    assert r.json()["status"] == "USED"

    r = client.post("/api/queue/verify", json={"reference_id": ref, "mark_used": True})
    assert r.status_code == 200
    assert r.json()["status"] == "USED"
    assert r.json()["marked_used"] is False

    r = client.post("/api/queue/verify", json={"reference_id": "missing"})
    assert r.status_code == 404
    assert r.json()["valid"] is False

    clock.set(clock.now() + timedelta(days=1))
    r = client.post("/api/queue/verify", json={"reference_id": ref})
    assert r.status_code == 400
    assert r.json()["error"] == "EXPIRED"


def test_stats(client):
    generate(client, "NY/23A/1", device(1), "10.0.0.1")
    ref = generate(client, "NY/23A/2", device(2), "10.0.0.2").json()["reference_id"]
    client.post("/api/queue/verify", json={"reference_id": ref, "mark_used": True})

    r = client.get("/api/queue/stats")
    assert r.status_code == 200
    body = r.json()
    assert body["day"] == "2026-03-02"
    [site] = body["sites"]
    assert (site["total"], site["active"], site["used"], site["highest_sequence"]) == (2, 1, 1, 2)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["store"] is True


def test_generate_is_throttled_per_client(ledger, clock, site):
    client = TestClient(create_app(ledger=ledger, clock=clock, bypass_geofence=False,
                                   allocate_rpm=2, verify_rpm=100, trust_proxy=True))
    assert generate(client, "NY/23A/1", device(1), "10.0.0.1").status_code == 201
    assert generate(client, "NY/23A/1", device(1), "10.0.0.1").status_code == 200
    r = generate(client, "NY/23A/1", device(1), "10.0.0.1")
    assert r.status_code == 429
    assert "Retry-After" in r.headers
    # other clients are unaffected
    assert generate(client, "NY/23A/2", device(2), "10.0.0.2").status_code == 201


def test_without_proxy_trust_peer_address_is_used(ledger, clock, site):
    client = TestClient(create_app(ledger=ledger, clock=clock, bypass_geofence=False,
                                   allocate_rpm=100, verify_rpm=100, trust_proxy=False))
    assert generate(client, "NY/23A/1", device(1), "10.0.0.1").status_code == 201
    # spoofed header ignored: same peer address, so same device
    r = generate(client, "NY/23A/2", device(2), "10.0.0.2")
    assert r.json()["error"] == "DEVICE_ALREADY_USED"
    assert r.json()["details"]["matched_signals"] == ["network_address"]
