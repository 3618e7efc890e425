from datetime import timedelta

from circlein.models import Amenity, CommunityNotification
from circlein.services.notification_service import create_notification, get_community_recipients
from circlein.shared.timeutils import isoformat, start_of_day, utcnow
from tests.util.seed import make_user


class TestEmailEndpoint:
    def test_sends_template(self, client, login, alice, mailer):
        login(alice.email)
        response = client.post(
            "/api/notifications/email",
            json={"type": "bookingWaitlist", "to": "bob@maple.test", "data": {"amenityName": "Gym", "waitlistPosition": 3}},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["type"] == "booking_waitlist"
        assert mailer.sent[0]["subject"] == "📋 Waitlisted: Gym (Position #3)"

    def test_recipient_falls_back_to_data(self, client, login, alice, mailer):
        login(alice.email)
        response = client.post(
            "/api/notifications/email",
            json={"type": "booking_reminder", "data": {"userEmail": "carol@maple.test"}},
        )
        assert response.json()["recipient"] == "carol@maple.test"

    def test_unknown_type(self, client, login, alice):
        login(alice.email)
        response = client.post("/api/notifications/email", json={"type": "party_invite", "to": "x@y.z", "data": {}})
        assert response.status_code == 400

    def test_missing_recipient(self, client, login, alice):
        login(alice.email)
        response = client.post("/api/notifications/email", json={"type": "booking_reminder", "data": {}})
        assert response.status_code == 400

    def test_delivery_failure_is_500(self, client, login, alice, mailer):
        mailer.fail = True
        login(alice.email)
        response = client.post(
            "/api/notifications/email",
            json={"type": "booking_reminder", "to": "bob@maple.test", "data": {}},
        )
        assert response.status_code == 500
        assert response.json()["success"] is False


class TestAmenityBlock:
    def test_block_notifies_active_residents(self, client, login, db, admin, alice, bob, pool, mailer):
        make_user(db, "gone@maple.test", deleted=True)
        start = utcnow() + timedelta(days=1)
        login(admin.email)
        response = client.post(
            "/api/notifications/amenity-block",
            json={
                "amenityId": pool.id,
                "reason": "Holi celebrations",
                "startDate": isoformat(start),
                "endDate": isoformat(start + timedelta(days=1)),
                "isFestive": True,
            },
        )
        assert response.status_code == 200
        assert response.json()["sent"] == 2
        assert sorted(m["to"] for m in mailer.sent) == [alice.email, bob.email]
        assert mailer.sent[0]["subject"].startswith("🚫 Festive Block")

        db.expire_all()
        blocked = db.get(Amenity, pool.id)
        assert blocked.is_blocked is True
        assert blocked.block_reason == "Holi celebrations"

        # Bookings inside the block are refused
        login(alice.email)
        booking = client.post(
            "/api/bookings/create",
            json={
                "amenityId": pool.id,
                "startTime": isoformat(start + timedelta(hours=1)),
                "endTime": isoformat(start + timedelta(hours=2)),
            },
        )
        assert booking.status_code == 400

    def _block(self, client, amenity, first_day, last_day):
        return client.post(
            "/api/notifications/amenity-block",
            json={
                "amenityId": amenity.id,
                "reason": "Deep cleaning",
                "startDate": isoformat(first_day),
                "endDate": isoformat(last_day),
            },
        )

    def _book(self, client, amenity, start):
        return client.post(
            "/api/bookings/create",
            json={
                "amenityId": amenity.id,
                "startTime": isoformat(start),
                "endTime": isoformat(start + timedelta(hours=1)),
            },
        )

    def test_single_day_block_covers_the_whole_day(self, client, login, db, admin, alice, pool):
        day = start_of_day(utcnow() + timedelta(days=3))
        login(admin.email)
        assert self._block(client, pool, day, day).status_code == 200

        db.expire_all()
        blocked = db.get(Amenity, pool.id)
        assert blocked.blocked_from == day
        assert blocked.blocked_until == day + timedelta(days=1)

        login(alice.email)
        assert self._book(client, pool, day + timedelta(hours=10)).status_code == 400
        assert self._book(client, pool, day + timedelta(hours=23)).status_code == 400
        assert self._book(client, pool, day + timedelta(days=1, hours=10)).status_code == 200

        # Same-day notice is still visible during the blocked day
        titles = [n["title"] for n in client.get("/api/notifications").json()["notifications"]]
        assert "Swimming Pool unavailable" in titles

    def test_last_day_of_range_is_blocked(self, client, login, admin, alice, pool):
        day = start_of_day(utcnow() + timedelta(days=3))
        login(admin.email)
        assert self._block(client, pool, day, day + timedelta(days=2)).status_code == 200

        login(alice.email)
        assert self._book(client, pool, day + timedelta(days=2, hours=10)).status_code == 400
        assert self._book(client, pool, day + timedelta(days=3, hours=10)).status_code == 200

    def test_times_inside_the_dates_are_ignored(self, client, login, db, admin, pool):
        day = start_of_day(utcnow() + timedelta(days=3))
        login(admin.email)
        response = self._block(client, pool, day + timedelta(hours=15), day + timedelta(hours=9))
        assert response.status_code == 200
        db.expire_all()
        assert db.get(Amenity, pool.id).blocked_from == day

    def test_end_before_start(self, client, login, admin, pool):
        start = utcnow() + timedelta(days=1)
        login(admin.email)
        response = client.post(
            "/api/notifications/amenity-block",
            json={
                "amenityId": pool.id,
                "reason": "Repairs",
                "startDate": isoformat(start),
                "endDate": isoformat(start - timedelta(days=1)),
            },
        )
        assert response.status_code == 400

    def test_unblock(self, client, login, db, admin, alice, pool, mailer):
        pool.is_blocked = True
        pool.block_reason = "Repairs"
        db.commit()

        login(admin.email)
        response = client.post("/api/notifications/amenity-unblock", json={"amenityId": pool.id})
        assert response.status_code == 200
        assert mailer.sent[0]["subject"] == "✅ Available Again: Swimming Pool"
        db.expire_all()
        assert db.get(Amenity, pool.id).is_blocked is False

        again = client.post("/api/notifications/amenity-unblock", json={"amenityId": pool.id})
        assert again.status_code == 400

    def test_residents_cannot_block(self, client, login, alice, pool):
        start = utcnow() + timedelta(days=1)
        login(alice.email)
        response = client.post(
            "/api/notifications/amenity-block",
            json={"amenityId": pool.id, "reason": "x", "startDate": isoformat(start), "endDate": isoformat(start)},
        )
        assert response.status_code == 403


class TestInAppNotifications:
    def test_lists_own_and_community_wide(self, client, login, db, alice, bob):
        create_notification(db, "comm-1", "amenity_blocked", "Pool closed", "Maintenance")
        create_notification(db, "comm-1", "waitlist_promoted", "Spot open", "Confirm now", user_email=alice.email)
        create_notification(db, "comm-1", "waitlist_promoted", "Spot open", "Confirm now", user_email=bob.email)
        create_notification(
            db, "comm-1", "amenity_blocked", "Old news", "Expired", expires_at=utcnow() - timedelta(hours=1)
        )
        db.commit()

        login(alice.email)
        body = client.get("/api/notifications").json()
        assert body["unreadCount"] == 2
        assert sorted(n["title"] for n in body["notifications"]) == ["Pool closed", "Spot open"]

    def test_mark_read(self, client, login, db, alice, bob):
        mine = create_notification(db, "comm-1", "waitlist_promoted", "Spot open", "Confirm", user_email=alice.email)
        db.commit()

        login(bob.email)
        assert client.post(f"/api/notifications/{mine.id}/read").status_code == 404

        login(alice.email)
        assert client.post(f"/api/notifications/{mine.id}/read").status_code == 200
        db.expire_all()
        assert db.get(CommunityNotification, mine.id).read is True


def test_recipients_skip_deleted_and_admins(db, admin, alice, bob):
    make_user(db, "gone@maple.test", deleted=True)
    assert get_community_recipients(db, "comm-1") == [alice.email, bob.email]
    assert admin.email in get_community_recipients(db, "comm-1", residents_only=False)
