from datetime import timedelta

from circlein.models import (
    ADMIN,
    CANCELLED,
    COMPLETED,
    PENDING_CONFIRMATION,
    RESIDENT,
    SUPER_ADMIN,
    WAITLIST,
    AccessCode,
    Booking,
    Invite,
    User,
)
from circlein.shared.timeutils import utcnow
from tests.util.seed import make_booking, make_code, make_community, make_user


def reload_user(db, email):
    db.expire_all()
    return db.get(User, email)


class TestCreateUser:
    def test_new_resident_with_access_code(self, client, login, db, community):
        make_code(db, "WELCOME1")
        login("new@maple.test", name="New Resident")
        response = client.post("/api/create-user", json={"accessCode": "welcome1", "flatNumber": "a-101"})
        assert response.status_code == 200
        assert response.json()["communityId"] == "comm-1"
        assert response.json()["role"] == RESIDENT

        user = reload_user(db, "new@maple.test")
        assert user.name == "New Resident"
        assert user.flat_number == "A-101"
        assert user.profile_completed is True
        assert db.get(AccessCode, "WELCOME1").used_by == "new@maple.test"

    def test_used_code_is_rejected(self, client, login, db, community):
        make_code(db, "WELCOME1", is_used=True, used_by="someone@maple.test")
        login("new@maple.test")
        response = client.post("/api/create-user", json={"accessCode": "WELCOME1"})
        assert response.status_code == 400
        assert reload_user(db, "new@maple.test") is None

    def test_pending_invite_grants_role(self, client, login, db, community):
        db.add(Invite(email="boss@maple.test", community_id="comm-1", role=ADMIN))
        db.commit()
        login("boss@maple.test")
        response = client.post("/api/create-user", json={})
        assert response.status_code == 200
        assert response.json()["role"] == ADMIN
        db.expire_all()
        assert db.query(Invite).one().status == "accepted"

    def test_no_community_assignment(self, client, login, community):
        login("lost@maple.test")
        response = client.post("/api/create-user", json={})
        assert response.status_code == 400

    def test_existing_user_login_is_refreshed(self, client, login, db, alice):
        login(alice.email)
        response = client.post("/api/create-user", json={})
        assert response.status_code == 200
        assert response.json()["message"] == "User login updated"
        assert reload_user(db, alice.email).last_login is not None

    def test_deleted_user_needs_new_code(self, client, login, db, community):
        make_user(db, "gone@maple.test", deleted=True, status="deleted")
        login("gone@maple.test")
        assert client.post("/api/create-user", json={}).status_code == 403

        make_code(db, "COMEBACK")
        response = client.post("/api/create-user", json={"accessCode": "COMEBACK"})
        assert response.status_code == 200
        restored = reload_user(db, "gone@maple.test")
        assert restored.deleted is False
        assert restored.access_code_used == "COMEBACK"


class TestDeleteAndRestore:
    def test_delete_user_replaces_code(self, client, login, db, admin, community):
        make_code(db, "RESCODE1", is_used=True, used_by="res@maple.test")
        make_user(db, "res@maple.test", access_code_used="RESCODE1")

        login(admin.email)
        response = client.post("/api/delete-user", json={"email": "RES@maple.test", "reason": "Moved out"})
        assert response.status_code == 200
        body = response.json()
        assert body["deletedAccessCode"] == "RESCODE1"
        assert body["newAccessCode"] and body["newAccessCode"] != "RESCODE1"

        user = reload_user(db, "res@maple.test")
        assert user.deleted is True
        assert user.deleted_by == admin.email
        assert db.get(AccessCode, "RESCODE1").invalidated is True
        assert db.get(AccessCode, body["newAccessCode"]).is_used is False

    def test_delete_releases_open_bookings(self, client, login, db, admin, alice, bob, carol, pool, mailer):
        start = utcnow() + timedelta(days=1)
        held = make_booking(db, pool, alice.email, start)
        past = make_booking(db, pool, alice.email, utcnow() - timedelta(days=2), status=COMPLETED)
        waiting = make_booking(db, pool, bob.email, start, status=WAITLIST, waitlist_position=1)
        later = start + timedelta(hours=3)
        make_booking(db, pool, carol.email, later)
        queued = make_booking(db, pool, alice.email, later, status=WAITLIST, waitlist_position=1)
        behind = make_booking(db, pool, bob.email, later, status=WAITLIST, waitlist_position=2)

        login(admin.email)
        response = client.post("/api/delete-user", json={"email": alice.email})
        assert response.status_code == 200
        assert response.json()["cancelledBookings"] == 2
        assert response.json()["promotedBookingIds"] == [waiting.id]

        db.expire_all()
        cancelled = db.get(Booking, held.id)
        assert cancelled.status == CANCELLED
        assert cancelled.admin_cancellation is True
        assert cancelled.cancelled_by == admin.email
        assert db.get(Booking, queued.id).status == CANCELLED
        assert db.get(Booking, past.id).status == COMPLETED
        assert db.get(Booking, waiting.id).status == PENDING_CONFIRMATION
        assert db.get(Booking, behind.id).waitlist_position == 1
        assert "waitlist_promoted" in mailer.types_sent_to(bob.email)

    def test_deleted_user_loses_access(self, client, login, db, admin, alice):
        login(admin.email)
        client.post("/api/delete-user", json={"email": alice.email})
        login(alice.email)
        assert client.get("/api/bookings").status_code == 403

    def test_admin_cannot_delete_self(self, client, login, admin):
        login(admin.email)
        response = client.post("/api/delete-user", json={"email": admin.email})
        assert response.status_code == 400

    def test_resident_cannot_delete(self, client, login, alice, bob):
        login(alice.email)
        assert client.post("/api/delete-user", json={"email": bob.email}).status_code == 403

    def test_restore(self, client, login, db, admin, alice):
        login(admin.email)
        client.post("/api/delete-user", json={"email": alice.email})
        response = client.post("/api/restore-user", json={"email": alice.email})
        assert response.status_code == 200
        assert response.json()["user"]["deleted"] is False
        assert reload_user(db, alice.email).restored_by == admin.email


def test_update_flat_number(client, login, db, alice):
    login(alice.email)
    response = client.post("/api/update-flat-number", json={"flatNumber": "b 12"})
    assert response.status_code == 200
    assert response.json()["flatNumber"] == "B 12"

    bad = client.post("/api/update-flat-number", json={"flatNumber": "!!"})
    assert bad.status_code == 400


def test_auth_status(client, login, alice):
    login(alice.email)
    body = client.get("/api/auth-status").json()
    assert body["registered"] is True
    assert body["user"]["email"] == alice.email

    login("unknown@maple.test")
    assert client.get("/api/auth-status").json()["registered"] is False


def test_missing_bearer_token_is_unauthorized(client, community):
    assert client.get("/api/bookings").status_code == 401


class TestAssignAdmin:
    def test_creates_admin_in_own_community(self, client, login, db, admin):
        login(admin.email)
        response = client.post("/api/assign-admin", json={"email": "Deputy@maple.test"})
        assert response.status_code == 200
        assert response.json()["user"]["role"] == ADMIN

        deputy = reload_user(db, "deputy@maple.test")
        assert deputy.community_id == "comm-1"
        assert deputy.profile_completed is True
        invite = db.query(Invite).filter(Invite.email == "deputy@maple.test").one()
        assert invite.status == "accepted"

    def test_promotes_existing_resident(self, client, login, db, admin, alice):
        login(admin.email)
        client.post("/api/assign-admin", json={"email": alice.email})
        assert reload_user(db, alice.email).role == ADMIN

        login(alice.email)
        assert client.get("/api/admin/waitlist").status_code == 200

    def test_admin_limits(self, client, login, db, admin, alice):
        make_community(db, "comm-2", "Oak Towers")
        login(admin.email)
        assert client.post("/api/assign-admin", json={"email": "x@oak.test", "communityId": "comm-2"}).status_code == 403
        assert client.post("/api/assign-admin", json={"email": alice.email, "role": SUPER_ADMIN}).status_code == 403
        assert client.post("/api/assign-admin", json={"email": admin.email, "role": RESIDENT}).status_code == 400
        assert client.post("/api/assign-admin", json={"email": alice.email, "role": "owner"}).status_code == 400

    def test_super_admin_assigns_anywhere(self, client, login, db, community):
        make_community(db, "comm-2", "Oak Towers")
        root = make_user(db, "root@circlein.test", role=SUPER_ADMIN)
        login(root.email)
        response = client.post("/api/assign-admin", json={"email": "boss@oak.test", "communityId": "comm-2"})
        assert response.status_code == 200
        assert reload_user(db, "boss@oak.test").community_id == "comm-2"

    def test_residents_cannot_assign(self, client, login, alice, bob):
        login(alice.email)
        assert client.post("/api/assign-admin", json={"email": bob.email}).status_code == 403
