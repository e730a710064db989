from fastapi.testclient import TestClient

from bloodbank.config import Settings
from bloodbank.database import DONATION_ALERTS, HOSPITALS, USER_ROLES
from bloodbank.main import create_app

from .conftest import hospital_details, request_data


def auth(token):
    return {"Authorization": f"Bearer {token['access_token']}"}


def register(client, name, email, password="s3cretpass"):
    resp = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


def register_hospital(client, db):
    resp = client.post("/auth/register/hospital", json={
        "name": "Dr. Okafor",
        "email": "ops@citygeneral.org",
        "password": "s3cretpass",
        "hospital": hospital_details(),
    })
    assert resp.status_code == 200, resp.text
    token = resp.json()
    # verification happens out of band
    db[HOSPITALS].update_one({"user_id": token["user"]["id"]}, {"$set": {"is_verified": True}})
    hospital = client.get("/hospitals/me", headers=auth(token)).json()
    return token, hospital


DONOR_PROFILE = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "5551234567",
    "blood_type": "O-",
    "age": 29,
    "gender": "female",
    "weight": 61.5,
    "address": "12 Lake Road",
}


def test_root_and_diagnostics(client):
    assert client.get("/").status_code == 200
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"


def test_without_database_returns_503():
    app = create_app(settings=Settings(jwt_secret="x"))
    with TestClient(app) as c:
        resp = c.post("/auth/login", json={"email": "a@example.com", "password": "whatever1"})
    assert resp.status_code == 503


def test_requires_token(client):
    resp = client.get("/me")
    assert resp.status_code == 401
    resp = client.get("/me", headers={"Authorization": "Bearer nonsense"})
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_login_failure_is_401(client):
    register(client, "Kim Lee", "kim@example.com")
    resp = client.post("/auth/login", json={"email": "kim@example.com", "password": "wrongpass1"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Incorrect email or password"


def test_donation_flow(client, db):
    hospital_token, hospital = register_hospital(client, db)
    assert hospital["is_verified"] is True

    donor_token = register(client, "Asha Rao", "asha@example.com")
    resp = client.post("/donors", json=DONOR_PROFILE, headers=auth(donor_token))
    assert resp.status_code == 200, resp.text
    donor_id = resp.json()["_id"]
    assert client.post("/donors", json=DONOR_PROFILE, headers=auth(donor_token)).status_code == 409

    resp = client.post(
        f"/hospitals/{hospital['_id']}/donations",
        json={"donor_id": donor_id, "donation_date": "2024-01-10T00:00:00Z", "blood_type": "O-", "quantity": 1},
        headers=auth(hospital_token),
    )
    assert resp.status_code == 200, resp.text
    record_id = resp.json()["_id"]

    donor = client.get("/donors/me", headers=auth(donor_token)).json()
    assert donor["last_donation"].startswith("2024-01-10")

    alerts = client.get("/alerts", headers=auth(donor_token)).json()
    assert len(alerts) == 1
    assert alerts[0]["type"] == "collection"
    assert alerts[0]["status"] == "unread"
    assert alerts[0]["record_id"] == record_id

    availability = {a["blood_type"]: a for a in client.get("/blood/availability").json()}
    assert len(availability) == 8
    assert availability["O-"]["available"] == 1

    resp = client.put(f"/donations/{record_id}/status", json={"status": "processed"}, headers=auth(hospital_token))
    assert resp.status_code == 200
    assert client.get("/alerts/unread-count", headers=auth(donor_token)).json() == {"unread": 2}


def test_donor_cannot_record_donations(client, db):
    _, hospital = register_hospital(client, db)
    donor_token = register(client, "Asha Rao", "asha@example.com")
    donor_id = client.post("/donors", json=DONOR_PROFILE, headers=auth(donor_token)).json()["_id"]
    resp = client.post(
        f"/hospitals/{hospital['_id']}/donations",
        json={"donor_id": donor_id, "donation_date": "2024-01-10T00:00:00Z", "blood_type": "O-", "quantity": 1},
        headers=auth(donor_token),
    )
    assert resp.status_code == 403


def test_inventory_routes(client, db):
    token, hospital = register_hospital(client, db)
    path = f"/hospitals/{hospital['_id']}/inventory"

    lines = client.get(path, headers=auth(token)).json()
    assert len(lines) == 8
    assert all(line["available_units"] == 0 for line in lines)

    resp = client.put(f"{path}/A+", json={"available_units": 6}, headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["available_units"] == 6
    assert client.put(f"{path}/A+", json={"available_units": -1}, headers=auth(token)).status_code == 422
    assert client.put(f"{path}/X+", json={"available_units": 1}, headers=auth(token)).status_code == 422

    lines = client.get(path, headers=auth(token)).json()
    assert [(l["blood_type"], l["available_units"]) for l in lines] == [("A+", 6)]


def test_request_response_alerts_requester(client, db):
    hospital_token, hospital = register_hospital(client, db)
    patient_token = register(client, "Ravi Shah", "ravi@example.com")

    payload = request_data(hospital_id=hospital["_id"], status="fulfilled")
    payload.pop("user_id")
    resp = client.post("/requests", json=payload, headers=auth(patient_token))
    assert resp.status_code == 200, resp.text
    request_id = resp.json()["_id"]
    assert client.get(f"/requests/{request_id}", headers=auth(patient_token)).json()["status"] == "pending"

    resp = client.put(f"/requests/{request_id}", json={"units_needed": 3}, headers=auth(patient_token))
    assert resp.status_code == 200
    assert db[DONATION_ALERTS].count_documents({}) == 0

    resp = client.put(
        f"/hospitals/{hospital['_id']}/requests/{request_id}/respond",
        json={"status": "approved", "notes": "Units reserved"},
        headers=auth(hospital_token),
    )
    assert resp.status_code == 200
    alerts = client.get("/alerts", headers=auth(patient_token)).json()
    assert len(alerts) == 1
    assert alerts[0]["message"] == "Your blood request has been approved"

    stored = client.get(f"/requests/{request_id}", headers=auth(patient_token)).json()
    assert stored["status"] == "approved"
    assert stored["response_notes"] == "Units reserved"


def test_alert_belongs_to_recipient(client, db):
    alice = register(client, "Alice A", "alice@example.com")
    bob = register(client, "Bob B", "bob@example.com")
    alert_id = str(db[DONATION_ALERTS].insert_one({
        "user_id": alice["user"]["id"], "record_id": "r", "message": "m", "type": "usage", "status": "unread",
    }).inserted_id)

    assert client.put(f"/alerts/{alert_id}/read", headers=auth(bob)).status_code == 403
    assert client.put(f"/alerts/{alert_id}/read", headers=auth(alice)).status_code == 200
    assert client.get("/alerts/unread-count", headers=auth(alice)).json() == {"unread": 0}


def test_role_changes_need_admin(client, db):
    admin = register(client, "Ada Admin", "ada@example.com")
    user = register(client, "Kim Lee", "kim@example.com")
    path = f"/users/{user['user']['id']}/role"

    assert client.put(path, json={"role": "admin"}, headers=auth(user)).status_code == 403

    db[USER_ROLES].update_one({"_id": admin["user"]["id"]}, {"$set": {"role": "admin"}})
    assert client.put(path, json={"role": "hospital"}, headers=auth(admin)).status_code == 200
    assert client.get("/me", headers=auth(user)).json()["role"] == "hospital"


def test_logout(client):
    token = register(client, "Kim Lee", "kim@example.com")
    assert client.post("/auth/logout", headers=auth(token)).status_code == 200
    assert client.get("/me", headers=auth(token)).status_code == 401


def test_compatibility_routes(client):
    assert client.get("/blood/compatibility").json()["O-"] == ["O-"]
    assert client.get("/blood/compatibility/O+").json() == {"recipient": "O+", "donors": ["O+", "O-"]}
    assert client.get("/blood/compatibility/Q-").status_code == 422
    assert client.get("/blood/types").json()["AB+"] == "AB Positive (AB+)"


def test_upcoming_events_are_public(client, db):
    token, hospital = register_hospital(client, db)
    resp = client.post(f"/hospitals/{hospital['_id']}/events", json={
        "title": "Winter drive",
        "event_date": "2099-01-15T09:00:00Z",
        "start_time": "09:00",
        "end_time": "17:00",
        "location": "Main hall",
        "target_donors": 40,
    }, headers=auth(token))
    assert resp.status_code == 200, resp.text
    events = client.get("/events/upcoming").json()
    assert [e["title"] for e in events] == ["Winter drive"]
    assert events[0]["current_registered"] == 0


def test_donation_alert_follows_the_donor_profile(client, db):
    hospital_token, hospital = register_hospital(client, db)
    donor_token = register(client, "Asha Rao", "asha@example.com")
    eve_token = register(client, "Eve Ng", "eve@example.com")
    donor_id = client.post("/donors", json=DONOR_PROFILE, headers=auth(donor_token)).json()["_id"]

    resp = client.post(
        f"/hospitals/{hospital['_id']}/donations",
        json={
            "donor_id": donor_id,
            "user_id": eve_token["user"]["id"],
            "donation_date": "2024-01-10T00:00:00Z",
            "blood_type": "O-",
            "quantity": 1,
        },
        headers=auth(hospital_token),
    )
    assert resp.status_code == 200, resp.text

    stored = client.get(f"/donors/{donor_id}/donations", headers=auth(donor_token)).json()
    assert stored[0]["user_id"] == donor_token["user"]["id"]
    assert len(client.get("/alerts", headers=auth(donor_token)).json()) == 1
    assert client.get("/alerts", headers=auth(eve_token)).json() == []


def test_diagnostics_report_configured_database_url(db):
    settings = Settings(jwt_secret="x", database_url="mongodb://db.internal:27017", database_name="bloodbank")
    with TestClient(create_app(settings=settings, database=db)) as c:
        body = c.get("/test").json()
    assert body["database_url"] == "✅ Set"
    assert body["connection_status"] == "Connected"
