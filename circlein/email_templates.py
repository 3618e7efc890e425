"""
MJML Email Templates
All booking and community emails, rendered from a notification type key
"""

from html import escape
from typing import Optional

from .config import APP_URL

THEME = {
    "primary": "#2563eb",
    "primary_dark": "#1d4ed8",
    "primary_light": "#dbeafe",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#10b981",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


class UnknownTemplateError(ValueError):
    """Raised for a notification type with no template"""


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    accent: Optional[str] = None,
    community_name: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""
    accent = accent or THEME["primary"]

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{accent}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    footer_line = "© 2025 CircleIn"
    if community_name:
        footer_line = f"© 2025 CircleIn - {escape(community_name)}"

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{accent}" padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="26px" font-weight="700" color="#ffffff" padding="0">
              CircleIn
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="32px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              {footer_line}. This is an automated message, please do not reply.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _value(data: dict, key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None or value == "":
        return default
    return escape(str(value))


def _details_table(rows: list[tuple[str, str]]) -> str:
    """Label/value rows inside a bordered box"""
    items = "".join(
        f"""
        <tr>
          <td style="padding: 6px 0; color: {THEME['text_muted']}; width: 40%;">{label}</td>
          <td style="padding: 6px 0; color: {THEME['text_primary']}; font-weight: 600;">{value}</td>
        </tr>"""
        for label, value in rows
        if value
    )
    return f"""
    <mj-table padding="16px 0" border="1px solid {THEME['border']}" cellpadding="12px">
      {items}
    </mj-table>
    """


def _greeting(data: dict) -> str:
    return f"<mj-text>Hi <strong>{_value(data, 'userName', 'there')}</strong>,</mj-text>"


def _booking_rows(data: dict) -> list[tuple[str, str]]:
    return [
        ("Amenity", _value(data, "amenityName")),
        ("Date", _value(data, "date")),
        ("Time", _value(data, "timeSlot")),
        ("Booking ID", _value(data, "bookingId")),
    ]


def booking_confirmation_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    content = f"""
    {_greeting(data)}
    <mj-text>Great news! Your booking is confirmed.</mj-text>
    {_details_table(_booking_rows(data) + [("Community", _value(data, "communityName"))])}
    <mj-text color="{THEME['text_muted']}">Please arrive on time and show your QR code at check-in.</mj-text>
    """
    return (
        f"Booking Confirmed: {data.get('amenityName', 'Amenity')}",
        get_base_template(
            "Booking Confirmed",
            f"Your {amenity} booking is confirmed",
            content,
            cta_url=f"{APP_URL}/bookings",
            cta_label="View My Bookings",
            accent=THEME["success"],
            community_name=data.get("communityName"),
        ),
    )


def booking_reminder_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    content = f"""
    {_greeting(data)}
    <mj-text><strong>⚠️ Your {amenity} booking is coming up soon!</strong></mj-text>
    {_details_table(_booking_rows(data))}
    <mj-text color="{THEME['text_muted']}">
      If you can no longer make it, please cancel so a neighbour on the waitlist can take the slot.
    </mj-text>
    """
    return (
        f"⏰ Reminder: {data.get('amenityName', 'Amenity')} booking in 1 hour",
        get_base_template(
            "Booking Reminder",
            f"Your {amenity} booking starts in about an hour",
            content,
            cta_url=f"{APP_URL}/bookings",
            cta_label="View Booking",
            accent=THEME["warning"],
        ),
    )


def booking_cancellation_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    is_admin = bool(data.get("isAdminCancellation"))
    if is_admin:
        intro = "This booking was cancelled by your community administration."
        reason = _value(data, "cancellationReason")
        if reason:
            intro += f"<br/><br/><strong>Reason:</strong> {reason}"
    else:
        intro = "Your booking has been cancelled."
    rows = _booking_rows(data)
    if is_admin:
        rows.append(("Cancelled By", _value(data, "cancelledBy")))
    content = f"""
    {_greeting(data)}
    <mj-text>{intro}</mj-text>
    {_details_table(rows)}
    """
    return (
        f"❌ Booking Cancelled: {data.get('amenityName', 'Amenity')}",
        get_base_template(
            "Booking Cancelled",
            f"Your {amenity} booking was cancelled",
            content,
            cta_url=f"{APP_URL}/dashboard",
            cta_label="Book Another Slot",
            accent=THEME["danger"],
        ),
    )


def booking_waitlist_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    position = _value(data, "waitlistPosition", "?")
    content = f"""
    {_greeting(data)}
    <mj-text>
      The slot you asked for is fully booked, so you have been added to the waitlist.
      You are number <strong>#{position}</strong> in line.
    </mj-text>
    {_details_table(_booking_rows(data) + [("Position", f"#{position}")])}
    <mj-text color="{THEME['text_muted']}">
      If a spot opens up we will email you, and you will have a limited time to confirm it.
    </mj-text>
    """
    return (
        f"📋 Waitlisted: {data.get('amenityName', 'Amenity')} (Position #{data.get('waitlistPosition', '?')})",
        get_base_template(
            "You're on the Waitlist",
            f"You are #{position} on the waitlist for {amenity}",
            content,
            cta_url=f"{APP_URL}/bookings",
            cta_label="View My Bookings",
            community_name=data.get("communityName"),
        ),
    )


def waitlist_promoted_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    confirmation_url = data.get("confirmationUrl") or f"{APP_URL}/bookings"
    content = f"""
    {_greeting(data)}
    <mj-text>
      A spot just opened up for <strong>{amenity}</strong> and it is yours if you confirm in time.
    </mj-text>
    {_details_table([
        ("Amenity", amenity),
        ("Starts", _value(data, "startTime")),
        ("Ends", _value(data, "endTime")),
        ("Confirm By", _value(data, "deadline")),
    ])}
    <mj-text color="{THEME['danger']}">
      If you do not confirm before the deadline the spot goes to the next person on the waitlist.
    </mj-text>
    """
    return (
        f"🎉 Spot Available: {data.get('amenityName', 'Amenity')} - Confirm Now",
        get_base_template(
            "A Spot Opened Up!",
            f"Confirm your {amenity} booking before the deadline",
            content,
            cta_url=escape(confirmation_url),
            cta_label="Confirm Booking",
            accent=THEME["success"],
        ),
    )


def waitlist_auto_promoted_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    content = f"""
    {_greeting(data)}
    <mj-text>
      A resident did not check in for their <strong>{amenity}</strong> booking, so the slot has
      been offered to you. The session has already started, so please confirm quickly.
    </mj-text>
    {_details_table([
        ("Amenity", amenity),
        ("Starts", _value(data, "startTime")),
        ("Ends", _value(data, "endTime")),
        ("Confirm By", _value(data, "deadline")),
    ])}
    """
    return (
        f"⚡ Quick! {data.get('amenityName', 'Amenity')} is available now",
        get_base_template(
            "Slot Available Now",
            f"Confirm your {amenity} booking in the next few minutes",
            content,
            cta_url=escape(data.get("confirmationUrl") or f"{APP_URL}/bookings"),
            cta_label="Confirm Now",
            accent=THEME["warning"],
        ),
    )


def booking_confirmed_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    content = f"""
    {_greeting(data)}
    <mj-text>Thanks for confirming. The slot you were promoted into is now booked for you.</mj-text>
    {_details_table(_booking_rows(data))}
    """
    return (
        f"✅ Confirmed: {data.get('amenityName', 'Amenity')}",
        get_base_template(
            "Booking Confirmed",
            f"Your {amenity} booking is locked in",
            content,
            cta_url=f"{APP_URL}/bookings",
            cta_label="View My Bookings",
            accent=THEME["success"],
        ),
    )


def confirmation_reminder_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    hours = _value(data, "hoursRemaining", "a few")
    content = f"""
    {_greeting(data)}
    <mj-text>
      You still need to confirm your <strong>{amenity}</strong> booking. You have
      <strong>{hours} hour(s)</strong> left before it is released to the next person.
    </mj-text>
    {_details_table([("Amenity", amenity), ("Starts", _value(data, "startTime"))])}
    """
    return (
        f"⏳ Action Needed: Confirm your {data.get('amenityName', 'Amenity')} booking",
        get_base_template(
            "Confirmation Needed",
            f"Confirm your {amenity} booking",
            content,
            cta_url=escape(data.get("confirmationUrl") or f"{APP_URL}/bookings"),
            cta_label="Confirm Booking",
            accent=THEME["warning"],
        ),
    )


def amenity_blocked_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    festive = bool(data.get("isFestive"))
    reason = _value(data, "reason", "maintenance")
    heading = "🎉 Festive Block Notice" if festive else "🚫 Amenity Block Notice"
    content = f"""
    <mj-text><strong>{amenity}</strong> is temporarily unavailable.</mj-text>
    {_details_table([
        ("Reason", reason),
        ("From", _value(data, "startDate")),
        ("To", _value(data, "endDate")),
    ])}
    <mj-text color="{THEME['text_muted']}">
      The amenity is temporarily blocked for {reason.lower()}. We apologize for any inconvenience.
    </mj-text>
    """
    return (
        f"🚫 {'Festive Block' if festive else 'Amenity Blocked'}: {data.get('amenityName', 'Amenity')}",
        get_base_template(
            heading,
            f"{amenity} is temporarily unavailable",
            content,
            accent=THEME["danger"],
            community_name=data.get("communityName"),
        ),
    )


def amenity_unblocked_template(data: dict) -> tuple[str, str]:
    amenity = _value(data, "amenityName", "Amenity")
    content = f"""
    <mj-text>Good news! <strong>{amenity}</strong> is available for booking again.</mj-text>
    """
    return (
        f"✅ Available Again: {data.get('amenityName', 'Amenity')}",
        get_base_template(
            "Amenity Available",
            f"{amenity} can be booked again",
            content,
            cta_url=f"{APP_URL}/dashboard",
            cta_label="Book Now",
            accent=THEME["success"],
            community_name=data.get("communityName"),
        ),
    )


TEMPLATES = {
    "booking_confirmation": booking_confirmation_template,
    "booking_reminder": booking_reminder_template,
    "booking_cancellation": booking_cancellation_template,
    "booking_waitlist": booking_waitlist_template,
    "waitlist_promoted": waitlist_promoted_template,
    "waitlist_auto_promoted": waitlist_auto_promoted_template,
    "booking_confirmed": booking_confirmed_template,
    "confirmation_reminder": confirmation_reminder_template,
    "amenity_blocked": amenity_blocked_template,
    "amenity_unblocked": amenity_unblocked_template,
}

# Older clients send camelCase keys for some types
TEMPLATE_ALIASES = {
    "bookingWaitlist": "booking_waitlist",
    "waitlistPromoted": "waitlist_promoted",
    "confirmationReminder": "confirmation_reminder",
}


def resolve_template_type(notification_type: str) -> str:
    key = TEMPLATE_ALIASES.get(notification_type, notification_type)
    if key not in TEMPLATES:
        raise UnknownTemplateError(f"Invalid notification type: {notification_type}")
    return key


def render_email(notification_type: str, data: dict) -> tuple[str, str]:
    """Return (subject, mjml) for a notification type"""
    return TEMPLATES[resolve_template_type(notification_type)](data or {})
