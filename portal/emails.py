"""Transactional email over the Resend HTTP API.

Templates are small HTML bodies rendered with escaped fields. ``send_email``
retries Resend's 429 rate limit up to three times with a one second pause;
every other failure raises :class:`EmailError` immediately.
"""
from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from portal.config import get_settings

log = logging.getLogger(__name__)

RATE_LIMIT_PAUSE = 1.0


class EmailError(Exception):
    """Email could not be delivered (not configured, rejected, or rate limited)."""


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


_LAYOUT = """\
<!doctype html>
<html><body style="font-family: Arial, sans-serif; color: #0f172a; max-width: 560px; margin: 0 auto;">
<h2 style="color: #1d4ed8;">{heading}</h2>
{body}
<p style="color: #64748b; font-size: 12px;">BIRE Programme &middot; This is an automated message.</p>
</body></html>
"""


def _render(subject: str, heading: str, paragraphs: list[str]) -> RenderedEmail:
    body = "\n".join(f"<p>{p}</p>" for p in paragraphs)
    return RenderedEmail(subject, _LAYOUT.format(heading=html.escape(heading), body=body))


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def application_submission_email(
    *, applicant_name: str, business_name: str, application_id: int, track: str,
) -> RenderedEmail:
    return _render(
        "Application Submitted Successfully - BIRE Programme",
        "Application received",
        [
            f"Dear {html.escape(applicant_name)},",
            f"Thank you for applying to the BIRE Programme {html.escape(track.title())} Track "
            f"on behalf of <strong>{html.escape(business_name)}</strong>.",
            f"Your application reference is <strong>#{application_id}</strong>. "
            "Our reviewers will assess it and we will contact you about the outcome.",
        ],
    )


def application_decision_email(
    *, applicant_name: str, business_name: str, status: str,
) -> RenderedEmail:
    if status == "approved":
        lines = [
            f"Congratulations! The application for <strong>{html.escape(business_name)}</strong> "
            "has been approved.",
            "The programme team will reach out with next steps shortly.",
        ]
    else:
        lines = [
            f"Thank you for your interest. After careful review, the application for "
            f"<strong>{html.escape(business_name)}</strong> was not selected in this cycle.",
            f"Applications reopen in {html.escape(get_settings().next_application_period)}.",
        ]
    return _render(
        "Update on your BIRE Programme application",
        "Application update",
        [f"Dear {html.escape(applicant_name)},", *lines],
    )


def staff_account_email(*, name: str, email: str, role: str) -> RenderedEmail:
    return _render(
        "Your BIRE Programme portal account",
        "Welcome to the review team",
        [
            f"Dear {html.escape(name)},",
            f"An account with the role <strong>{html.escape(role.replace('_', ' '))}</strong> "
            f"was created for {html.escape(email)}. Sign in with the password shared by your admin "
            "and change it from your profile page.",
        ],
    )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


def send_email(to: str, message: RenderedEmail, retries: int = 3) -> dict[str, Any]:
    settings = get_settings()
    if not settings.resend_api_key:
        raise EmailError("Email service not configured")

    payload = {
        "from": settings.resend_from_email,
        "to": [to],
        "subject": message.subject,
        "html": message.html,
    }
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}

    for attempt in range(1, retries + 1):
        try:
            resp = httpx.post(settings.resend_api_url, json=payload, headers=headers, timeout=15.0)
        except httpx.HTTPError as exc:
            raise EmailError(f"Failed to send email: {exc}") from exc
        if resp.status_code < 400:
            try:
                return resp.json()
            except ValueError:
                log.warning("Email to %s sent but the reply was not JSON", to)
                return {}
        log.error("Email attempt %d/%d to %s failed: %s %s",
                  attempt, retries, to, resp.status_code, resp.text[:200])
        if resp.status_code == 429 and attempt < retries:
            log.warning("Rate limited, waiting %.0fs before retry %d", RATE_LIMIT_PAUSE, attempt + 1)
            time.sleep(RATE_LIMIT_PAUSE)
            continue
        raise EmailError(f"Failed to send email: HTTP {resp.status_code}")

    raise EmailError("Failed to send email after all retries")


def notify(to: str, message: RenderedEmail) -> bool:
    """Best-effort send: log and swallow delivery failures."""
    try:
        send_email(to, message)
    except EmailError as exc:
        log.warning("Email %r to %s not sent: %s", message.subject, to, exc)
        return False
    return True
