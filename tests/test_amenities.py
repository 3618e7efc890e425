from circlein.main import app
from circlein.models import Amenity, Community
from circlein.routes.amenities import generate_time_slots
from circlein.routes.auth import get_firebase_client
from circlein.routes.onboarding import STANDARD_IMAGES, pick_image
from tests.util.seed import make_amenity


def test_generate_time_slots():
    assert generate_time_slots("06:00", "09:00", 60) == ["06:00-07:00", "07:00-08:00", "08:00-09:00"]
    # A trailing partial slot is dropped
    assert generate_time_slots("06:00", "07:30", 60) == ["06:00-07:00"]


def test_pick_image_prefers_longest_keyword():
    assert pick_image("Rooftop Swimming Pool") == STANDARD_IMAGES["swimming pool"]
    assert pick_image("Mystery Room") == STANDARD_IMAGES["clubhouse"]
    assert pick_image("Gym", " https://cdn.test/gym.png ") == "https://cdn.test/gym.png"


class TestAmenityList:
    def test_lists_community_amenities(self, client, login, db, alice, pool):
        make_amenity(db, name="Gym", max_people=5)
        login(alice.email)
        body = client.get("/api/amenities/list").json()
        assert body["count"] == 2
        assert [a["name"] for a in body["amenities"]] == ["Gym", "Swimming Pool"]

    def test_time_slot_update_invalidates_cache(self, client, login, db, admin, alice, pool):
        login(alice.email)
        assert client.get("/api/amenities/list").json()["amenities"][0]["timeSlots"] is None

        login(admin.email)
        response = client.post(
            "/api/amenities/update-time-slots",
            json={"amenityId": pool.id, "operatingHours": {"start": "06:00", "end": "08:00"}, "slotDuration": 60},
        )
        assert response.status_code == 200
        assert response.json()["timeSlots"] == ["06:00-07:00", "07:00-08:00"]

        login(alice.email)
        listed = client.get("/api/amenities/list").json()["amenities"][0]
        assert listed["timeSlots"] == ["06:00-07:00", "07:00-08:00"]

    def test_explicit_slots_are_validated(self, client, login, admin, pool):
        login(admin.email)
        response = client.post(
            "/api/amenities/update-time-slots",
            json={"amenityId": pool.id, "timeSlots": ["25:00-26:00"]},
        )
        assert response.status_code == 400

    def test_update_needs_slots_or_hours(self, client, login, admin, pool):
        login(admin.email)
        response = client.post("/api/amenities/update-time-slots", json={"amenityId": pool.id})
        assert response.status_code == 400


class TestOnboarding:
    def test_update_community(self, client, login, db, admin):
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/update-community",
            json={"communityId": "comm-1", "communityName": "Maple Heights", "address": "12 Ring Road"},
        )
        assert response.status_code == 200
        db.expire_all()
        community = db.get(Community, "comm-1")
        assert community.name == "Maple Heights"
        assert community.address == "12 Ring Road"

    def test_create_amenities(self, client, login, db, admin):
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/create-amenities",
            json={
                "communityId": "comm-1",
                "amenities": [
                    {
                        "name": "Tennis Court",
                        "description": "Two synthetic courts",
                        "maxPeople": 4,
                        "operatingHours": {"start": "06:00", "end": "10:00"},
                        "slotDuration": 120,
                    },
                    {"name": "Yoga Deck", "description": "Morning sessions"},
                ],
            },
        )
        assert response.status_code == 200
        created = response.json()["amenities"]
        assert [a["name"] for a in created] == ["Tennis Court", "Yoga Deck"]
        assert created[0]["timeSlots"] == ["06:00-08:00", "08:00-10:00"]
        assert created[0]["imageUrl"] == STANDARD_IMAGES["tennis"]
        assert db.query(Amenity).count() == 2

    def test_other_community_is_forbidden(self, client, login, admin):
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/create-amenities",
            json={"communityId": "comm-9", "amenities": [{"name": "Gym", "description": "Weights"}]},
        )
        assert response.status_code == 403


class FakeFirebase:
    def __init__(self):
        self.calls = []

    def create_custom_token(self, uid, claims):
        self.calls.append((uid, claims))
        return "custom-token"


def test_firebase_token_carries_role_and_community(client, login, admin):
    firebase = FakeFirebase()
    app.dependency_overrides[get_firebase_client] = lambda: firebase
    login(admin.email)

    response = client.post("/api/auth/firebase-token")
    assert response.status_code == 200
    assert response.json()["token"] == "custom-token"
    uid, claims = firebase.calls[0]
    assert uid == admin.email
    assert claims["role"] == "admin"
    assert claims["communityId"] == "comm-1"
