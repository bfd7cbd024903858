"""
User, login and credential tests.
"""
import pytest

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import AuthenticationError, ConflictError, ValidationError
from app.features.permissions.authority import PermissionAuthority
from app.features.signouts.engine import SignoutEngine
from app.features.signouts.schemas import PersonCreate
from app.features.users.auth import CredentialVerifier, create_access_token, verify_access_token
from app.features.users.service import UserService
from conftest import PASSWORD, PIN


# =============================================================================
# CREDENTIALS
# =============================================================================


class TestCredentialVerifier:

    async def test_pin_and_password(self, db, operator):
        verifier = CredentialVerifier(db)

        assert await verifier.verify_pin(operator.id, PIN)
        assert not await verifier.verify_pin(operator.id, "0000")
        assert await verifier.verify_password(operator.id, PASSWORD)
        assert not await verifier.verify_password(operator.id, "nope")

    async def test_unknown_and_inactive_users_fail(self, db, operator):
        operator_id = operator.id
        assert not await CredentialVerifier(db).verify_pin("01HZZZZZZZZZZZZZZZZZZZZZZZ", PIN)

        await UserService(db).set_active(operator_id, False)

        assert not await CredentialVerifier(db).verify_pin(operator_id, PIN)

    def test_token_round_trip(self):
        assert verify_access_token(create_access_token("01HAAAAAAAAAAAAAAAAAAAAAAA"))["sub"] == "01HAAAAAAAAAAAAAAAAAAAAAAA"

    def test_tampered_token(self):
        token = create_access_token("01HAAAAAAAAAAAAAAAAAAAAAAA")

        with pytest.raises(AuthenticationError):
            verify_access_token(token[:-2] + "xx")


# =============================================================================
# SERVICE
# =============================================================================


class TestUserService:

    async def test_new_users_get_basic_permissions(self, db):
        user = await UserService(db).create_user("newbie", PASSWORD, PIN, "PV2", "New Bie", created_by=None)

        grants = await PermissionAuthority(db).get_grants(user.id)
        assert grants == {"view_dashboard", "create_signout", "sign_in_soldiers", "view_logs"}

    async def test_duplicate_username(self, db, operator):
        with pytest.raises(ConflictError):
            await UserService(db).create_user("operator", PASSWORD, PIN, "", "Dup", created_by=None)

    async def test_change_own_pin(self, db, operator):
        operator_id = operator.id
        service = UserService(db)

        with pytest.raises(AuthenticationError):
            await service.change_own_pin(operator_id, "0000", "5678")

        await service.change_own_pin(operator_id, PIN, "5678")
        assert await CredentialVerifier(db).verify_pin(operator_id, "5678")

    async def test_delete_unreferenced_user(self, db, viewer):
        viewer_id = viewer.id

        assert await UserService(db).delete_user(viewer_id) == "deleted"

        async with AsyncSessionLocal() as session:
            assert await UserService(session).get_by_username("viewer") is None
            assert await PermissionAuthority(session).get_grants(viewer_id) == set()

    async def test_delete_referenced_user_deactivates_and_annotates(self, db, operator):
        operator_id = operator.id
        signout_id = await SignoutEngine(db).create_event(
            [PersonCreate(first_name="John", last_name="Doe")], "PX", operator
        )

        assert await UserService(db).delete_user(operator_id) == "deactivated"

        async with AsyncSessionLocal() as session:
            user = await UserService(session).get(operator_id)
            assert user.is_active is False
            event = await SignoutEngine(session).get_by_id(signout_id)
            assert event.signed_out_by_name == "SSG Olive Operator (deleted user)"

    async def test_repeated_delete_annotates_once(self, db, operator):
        operator_id = operator.id
        engine = SignoutEngine(db)
        signout_id = await engine.create_event([PersonCreate(first_name="John", last_name="Doe")], "PX", operator)
        await engine.sign_in(signout_id, operator)

        assert await UserService(db).delete_user(operator_id) == "deactivated"
        assert await UserService(db).delete_user(operator_id) == "deactivated"

        async with AsyncSessionLocal() as session:
            event = await SignoutEngine(session).get_by_id(signout_id)
        assert event.signed_out_by_name == "SSG Olive Operator (deleted user)"
        assert event.signed_in_by_name == "SSG Olive Operator (deleted user)"

    async def test_admin_cannot_be_deleted(self, db, admin):
        with pytest.raises(ValidationError):
            await UserService(db).delete_user(admin.id)


# =============================================================================
# API
# =============================================================================


class TestLogin:

    async def test_login_and_me(self, client, operator):
        resp = await client.post("/auth/login", json={"username": "operator", "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["display_name"] == "SSG Olive Operator"

        resp = await client.get("/users/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert resp.json()["username"] == "operator"
        assert resp.json()["last_login_at"] is not None

    async def test_bad_password(self, client, operator):
        resp = await client.post("/auth/login", json={"username": "operator", "password": "nope"})
        assert resp.status_code == 401

    async def test_deactivated_user_is_locked_out(self, client, db, operator, headers_for):
        operator_id = operator.id
        await UserService(db).set_active(operator_id, False)

        resp = await client.get("/users/me", headers=headers_for(operator_id))
        assert resp.status_code == 403


class TestUserAdministration:

    async def test_create_user(self, client, admin, headers_for):
        resp = await client.post(
            "/users",
            json={
                "username": "recruit",
                "password": "secret1",
                "user_pin": "4321",
                "rank": "PVT",
                "full_name": "Rita Recruit",
                "pin": PIN,
            },
            headers=headers_for(admin.id),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["display_name"] == "PVT Rita Recruit"

        resp = await client.post("/auth/login", json={"username": "recruit", "password": "secret1"})
        assert resp.status_code == 200

    async def test_create_requires_manage_users(self, client, operator, headers_for):
        resp = await client.post(
            "/users",
            json={"username": "x", "password": "secret1", "user_pin": "4321", "full_name": "X", "pin": PIN},
            headers=headers_for(operator.id),
        )
        assert resp.status_code == 403

    async def test_cannot_delete_self(self, client, admin, headers_for):
        resp = await client.request("DELETE", f"/users/{admin.id}", json={"pin": PIN}, headers=headers_for(admin.id))
        assert resp.status_code == 400

    async def test_reset_pin(self, client, admin, operator, headers_for):
        operator_id = operator.id

        resp = await client.patch(
            f"/users/{operator_id}/pin", json={"new_pin": "8888", "pin": PIN}, headers=headers_for(admin.id)
        )
        assert resp.status_code == 204

        resp = await client.post(
            "/signouts",
            json={"soldiers": [{"first_name": "A", "last_name": "B"}], "location": "PX", "pin": "8888"},
            headers=headers_for(operator_id),
        )
        assert resp.status_code == 201

    async def test_status_update(self, client, admin, viewer, headers_for):
        resp = await client.patch(
            f"/users/{viewer.id}/status", json={"is_active": False, "pin": PIN}, headers=headers_for(admin.id)
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

    async def test_read_other_user_requires_manage_users(self, client, admin, viewer, headers_for):
        resp = await client.get(f"/users/{admin.id}", headers=headers_for(viewer.id))
        assert resp.status_code == 403

        resp = await client.get(f"/users/{viewer.id}", headers=headers_for(viewer.id))
        assert resp.status_code == 200
