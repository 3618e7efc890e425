import pytest

from circlein.email_templates import (
    TEMPLATES,
    UnknownTemplateError,
    render_email,
    resolve_template_type,
)

BOOKING_DATA = {
    "userName": "Alice",
    "amenityName": "Swimming Pool",
    "date": "Monday, March 3, 2025",
    "timeSlot": "10:00 AM - 11:00 AM",
    "bookingId": "booking-123",
    "communityName": "Maple Residency",
    "waitlistPosition": 2,
    "confirmationUrl": "http://localhost:3000/bookings/confirm/booking-123",
    "deadline": "Wednesday, March 5, 2025 10:00 AM UTC",
    "reason": "Maintenance",
    "startDate": "Monday, March 3, 2025",
    "endDate": "Tuesday, March 4, 2025",
}


@pytest.mark.parametrize("template_type", sorted(TEMPLATES))
def test_every_template_renders(template_type):
    subject, mjml = render_email(template_type, BOOKING_DATA)
    assert "Swimming Pool" in subject
    assert mjml.strip().startswith("<mjml>")
    assert "</mjml>" in mjml


def test_template_set_is_complete():
    assert set(TEMPLATES) == {
        "booking_confirmation",
        "booking_reminder",
        "booking_cancellation",
        "booking_waitlist",
        "waitlist_promoted",
        "waitlist_auto_promoted",
        "booking_confirmed",
        "confirmation_reminder",
        "amenity_blocked",
        "amenity_unblocked",
    }


def test_camel_case_aliases_resolve():
    assert resolve_template_type("bookingWaitlist") == "booking_waitlist"
    assert resolve_template_type("waitlistPromoted") == "waitlist_promoted"
    assert resolve_template_type("confirmationReminder") == "confirmation_reminder"


def test_unknown_type_raises():
    with pytest.raises(UnknownTemplateError):
        render_email("birthday_card", BOOKING_DATA)


def test_waitlist_subject_includes_position():
    subject, _ = render_email("booking_waitlist", BOOKING_DATA)
    assert "Position #2" in subject


def test_user_values_are_escaped():
    subject, mjml = render_email("booking_confirmation", {**BOOKING_DATA, "userName": "<script>x</script>"})
    assert "<script>" not in mjml
    assert "&lt;script&gt;" in mjml


def test_festive_block_subject():
    subject, _ = render_email("amenity_blocked", {**BOOKING_DATA, "isFestive": True})
    assert subject.startswith("🚫 Festive Block")


def test_missing_values_fall_back():
    subject, mjml = render_email("booking_reminder", {})
    assert "Amenity" in subject
    assert "there" in mjml
