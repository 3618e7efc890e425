from datetime import timedelta

import pytest

from circlein.models import AccessCode
from circlein.services.access_codes import (
    AccessCodeError,
    CodeGenerationError,
    generate_access_code,
    generate_unique_codes,
    redeem_access_code,
)
from circlein.shared.timeutils import utcnow
from tests.util.seed import make_code, make_community


def test_generated_code_shape():
    code = generate_access_code()
    assert len(code) == 8
    assert code.isalnum() and code == code.upper()


class TestGenerateCodesEndpoint:
    def test_generates_distinct_codes(self, client, login, db, admin):
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/generate-codes",
            json={"communityId": "comm-1", "codeCount": 50},
        )
        assert response.status_code == 200
        codes = response.json()["codes"]
        assert len(codes) == 50
        assert len(set(codes)) == 50
        assert db.query(AccessCode).count() == 50

    @pytest.mark.parametrize("count", [0, 51, -1, "5", 2.5, True])
    def test_rejects_bad_counts(self, client, login, db, admin, count):
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/generate-codes",
            json={"communityId": "comm-1", "codeCount": count},
        )
        assert response.status_code == 400
        assert db.query(AccessCode).count() == 0

    def test_exhaustion_writes_nothing(self, client, login, db, admin, monkeypatch):
        monkeypatch.setattr("circlein.services.access_codes.generate_access_code", lambda: "SAMECODE")
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/generate-codes",
            json={"communityId": "comm-1", "codeCount": 3},
        )
        assert response.status_code == 500
        assert db.query(AccessCode).count() == 0

    def test_other_community_is_forbidden(self, client, login, db, admin):
        make_community(db, "comm-2", "Oak Towers")
        login(admin.email)
        response = client.post(
            "/api/admin/onboarding/generate-codes",
            json={"communityId": "comm-2", "codeCount": 1},
        )
        assert response.status_code == 403

    def test_residents_cannot_generate(self, client, login, alice):
        login(alice.email)
        response = client.post(
            "/api/admin/onboarding/generate-codes",
            json={"communityId": "comm-1", "codeCount": 1},
        )
        assert response.status_code == 403


def test_unique_codes_avoid_stored_codes(db, community):
    make_code(db, "TAKEN001")
    candidates = iter(["TAKEN001", "FRESH001", "FRESH001", "FRESH002"])
    codes = generate_unique_codes(db, 2, generator=lambda: next(candidates))
    assert codes == ["FRESH001", "FRESH002"]


def test_attempt_limit(db, community):
    make_code(db, "TAKEN001")
    with pytest.raises(CodeGenerationError):
        generate_unique_codes(db, 1, generator=lambda: "TAKEN001", max_attempts=5)


class TestRedeem:
    def test_redeem_marks_code_used(self, db, community):
        make_code(db, "ABCD1234")
        code = redeem_access_code(db, "abcd1234 ", "new@maple.test")
        db.commit()
        assert code.is_used is True
        assert code.used_by == "new@maple.test"

    def test_second_redeem_loses(self, db, community):
        make_code(db, "ABCD1234")
        redeem_access_code(db, "ABCD1234", "first@maple.test")
        db.commit()
        with pytest.raises(AccessCodeError, match="already been used"):
            redeem_access_code(db, "ABCD1234", "second@maple.test")
        db.rollback()
        db.expire_all()
        assert db.get(AccessCode, "ABCD1234").used_by == "first@maple.test"

    def test_unknown_code(self, db, community):
        with pytest.raises(AccessCodeError, match="Invalid access code"):
            redeem_access_code(db, "NOPE0000", "x@maple.test")

    def test_expired_code(self, db, community):
        make_code(db, "OLDCODE1", expires_at=utcnow() - timedelta(days=1))
        with pytest.raises(AccessCodeError, match="expired"):
            redeem_access_code(db, "OLDCODE1", "x@maple.test")

    def test_invalidated_code(self, db, community):
        make_code(db, "DEADCODE", invalidated=True)
        with pytest.raises(AccessCodeError, match="no longer valid"):
            redeem_access_code(db, "DEADCODE", "x@maple.test")


class TestAutoReplace:
    def test_replaces_used_code(self, client, login, db, admin):
        make_code(db, "USED0001", is_used=True, used_by="a@maple.test")
        login(admin.email)
        response = client.post("/api/access-codes/auto-replace", json={"usedCodeId": "USED0001"})
        assert response.status_code == 200
        new_code = response.json()["newCode"]

        db.expire_all()
        assert db.get(AccessCode, "USED0001").invalidated is True
        fresh = db.get(AccessCode, new_code)
        assert fresh.community_id == "comm-1"
        assert fresh.is_used is False

    def test_unknown_code(self, client, login, admin):
        login(admin.email)
        response = client.post("/api/access-codes/auto-replace", json={"usedCodeId": "MISSING1"})
        assert response.status_code == 404
