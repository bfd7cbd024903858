"""
Sign-out API tests.

Verifies:
- Unauthenticated requests return 401, missing permissions 403
- Mutations require the caller's PIN
- Create / sign-in / read round trip over HTTP
"""
import pytest

from conftest import PIN


def signout_body(**overrides):
    body = {
        "soldiers": [
            {"rank": "PVT", "first_name": "John", "last_name": "Doe"},
            {"rank": "SPC", "first_name": "Jane", "last_name": "Roe", "dod_id": "1234567890"},
        ],
        "location": "PX",
        "notes": "Back by 1700",
        "pin": PIN,
    }
    body.update(overrides)
    return body


# =============================================================================
# UNAUTHENTICATED ACCESS — 401
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/signouts"),
            ("POST", "/signouts"),
            ("GET", "/signouts/reports/current"),
            ("GET", "/signouts/logs"),
            ("GET", "/signouts/records"),
            ("GET", "/signouts/SO000000-XXXXXX"),
            ("PATCH", "/signouts/SO000000-XXXXXX/signin"),
        ],
    )
    async def test_requires_auth(self, client, method, path):
        resp = await client.request(method, path, json={})
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    async def test_garbage_token(self, client):
        resp = await client.get("/signouts", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401


# =============================================================================
# CREATE AND SIGN IN
# =============================================================================


class TestSignoutFlow:

    async def test_create_and_read_back(self, client, operator, headers_for):
        headers = headers_for(operator.id)

        resp = await client.post("/signouts", json=signout_body(), headers=headers)
        assert resp.status_code == 201, resp.text
        signout_id = resp.json()["signout_id"]
        assert resp.json()["soldier_count"] == 2

        resp = await client.get(f"/signouts/{signout_id}", headers=headers)
        assert resp.status_code == 200
        event = resp.json()
        assert event["status"] == "OUT"
        assert event["soldier_count"] == 2
        assert event["soldier_names"] == "PVT John Doe, SPC Jane Roe"
        assert event["signed_out_by_name"] == "SSG Olive Operator"
        assert event["soldiers"][1]["dod_id"] == "1234567890"

        resp = await client.get("/signouts/reports/current", headers=headers)
        assert [e["signout_id"] for e in resp.json()] == [signout_id]

    async def test_sign_in(self, client, operator, headers_for):
        headers = headers_for(operator.id)
        signout_id = (await client.post("/signouts", json=signout_body(), headers=headers)).json()["signout_id"]

        resp = await client.patch(f"/signouts/{signout_id}/signin", json={"pin": PIN}, headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["soldier_count"] == 2

        resp = await client.patch(f"/signouts/{signout_id}/signin", json={"pin": PIN}, headers=headers)
        assert resp.status_code == 400
        assert "already signed in" in resp.json()["detail"]

        resp = await client.get("/signouts/reports/current", headers=headers)
        assert resp.json() == []

    async def test_wrong_pin(self, client, operator, headers_for):
        resp = await client.post("/signouts", json=signout_body(pin="9999"), headers=headers_for(operator.id))

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid PIN"

    async def test_empty_soldier_list(self, client, operator, headers_for):
        resp = await client.post("/signouts", json=signout_body(soldiers=[]), headers=headers_for(operator.id))

        assert resp.status_code == 400
        assert "soldiers" in resp.json()

    async def test_missing_event(self, client, operator, headers_for):
        resp = await client.get("/signouts/SO000000-XXXXXX", headers=headers_for(operator.id))

        assert resp.status_code == 404


# =============================================================================
# PERMISSIONS — 403
# =============================================================================


class TestViewerDenied:

    async def test_cannot_create(self, client, viewer, headers_for):
        resp = await client.post("/signouts", json=signout_body(), headers=headers_for(viewer.id))

        assert resp.status_code == 403
        assert "create_signout" in resp.json()["detail"]

    async def test_cannot_read_logs(self, client, viewer, headers_for):
        resp = await client.get("/signouts/logs", headers=headers_for(viewer.id))

        assert resp.status_code == 403

    async def test_dashboard_is_enough_for_history(self, client, viewer, headers_for):
        resp = await client.get("/signouts", headers=headers_for(viewer.id))

        assert resp.status_code == 200
        assert resp.json() == []


# =============================================================================
# READS
# =============================================================================


class TestReads:

    async def test_filters_and_records(self, client, operator, headers_for):
        headers = headers_for(operator.id)
        await client.post("/signouts", json=signout_body(), headers=headers)
        await client.post(
            "/signouts",
            json=signout_body(soldiers=[{"first_name": "Max", "last_name": "Payne"}], location="Gym"),
            headers=headers,
        )

        resp = await client.get("/signouts", params={"soldier_name": "payne"}, headers=headers)
        assert [e["location"] for e in resp.json()] == ["Gym"]

        resp = await client.get("/signouts/logs", params={"location": "px"}, headers=headers)
        assert [e["soldier_count"] for e in resp.json()] == [2]

        resp = await client.get("/signouts/records", params={"status": "OUT"}, headers=headers)
        assert len(resp.json()) == 3

    async def test_bad_date_range(self, client, operator, headers_for):
        resp = await client.get(
            "/signouts",
            params={"start_date": "2025-03-05", "end_date": "2025-03-01"},
            headers=headers_for(operator.id),
        )

        assert resp.status_code == 400

    async def test_groups(self, client, operator, headers_for):
        headers = headers_for(operator.id)
        signout_id = (await client.post("/signouts", json=signout_body(), headers=headers)).json()["signout_id"]

        resp = await client.post("/signouts/groups", json={"signout_ids": [signout_id]}, headers=headers)
        assert [e["signout_id"] for e in resp.json()] == [signout_id]

        resp = await client.post("/signouts/groups", json={"signout_ids": []}, headers=headers)
        assert resp.status_code == 400
