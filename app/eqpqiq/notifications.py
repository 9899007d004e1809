"""
Transactional email.

`send_email()` is the single seam every feature goes through; with no
RESEND_API_KEY configured it runs in dev mode and only logs the message.
"""
from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


class EmailError(RuntimeError):
    pass


class EmailRejected(EmailError):
    """Provider refused the message (4xx other than 429); retrying will not help."""


@dataclass(frozen=True)
class EmailClient:
    api_key: str
    from_email: str
    base_url: str = "https://api.resend.com"
    timeout_seconds: int = 20

    def send(self, *, to: str | list[str], subject: str, html: str, text: str | None = None, retries: int = 2) -> dict[str, Any]:
        body: dict[str, Any] = {
            "from": self.from_email,
            "to": [to] if isinstance(to, str) else list(to),
            "subject": subject,
            "html": html,
        }
        if text:
            body["text"] = text
        data = json.dumps(body).encode("utf-8")
        url = self.base_url.rstrip("/") + "/emails"

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method="POST")
                req.add_header("Authorization", f"Bearer {self.api_key}")
                req.add_header("Content-Type", "application/json")
                req.add_header("Accept", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8")) if raw else {}
                    except ValueError as e:
                        raise EmailError("Invalid JSON from email provider") from e
            except urllib.error.HTTPError as e:
                try:
                    detail = e.read().decode("utf-8", errors="ignore")
                except Exception:
                    detail = ""
                if e.code == 429 or e.code >= 500:
                    last_err = EmailError(f"HTTP {e.code} from email provider: {detail[:300]}")
                    time.sleep(min(2 * (attempt + 1), 10))
                    continue
                raise EmailRejected(f"HTTP {e.code} from email provider: {detail[:300]}") from e
            except (urllib.error.URLError, TimeoutError, OSError) as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        raise EmailError(f"Email send failed after retries: {last_err}")


def client_from_config(config) -> EmailClient | None:
    api_key = (config.get("RESEND_API_KEY") or "").strip()
    if not api_key:
        return None
    return EmailClient(
        api_key=api_key,
        from_email=config.get("FROM_EMAIL") or "noreply@eqpqiq.com",
        timeout_seconds=int(config.get("EMAIL_TIMEOUT_SECONDS") or 20),
    )


def send_email(to: str, subject: str, html: str, *, text: str | None = None, retries: int = 2, config=None) -> bool:
    """
    Returns True when the provider accepted the message (or in dev mode).
    Failures are logged, never raised: an email problem must not fail the request.
    """
    cfg = config if config is not None else current_app.config
    client = client_from_config(cfg)
    if client is None:
        logger.info("[email] (DEV MODE) to=%s subject=%s", to, subject)
        return True
    try:
        client.send(to=to, subject=subject, html=html, text=text, retries=retries)
        return True
    except EmailError as e:
        logger.error("[email] send failed to=%s subject=%s: %s", to, subject, e)
        return False


# ---------- message builders ----------

_FOOTER = '<hr/><p style="color:#999;font-size:12px;text-align:center;">EQ·PQ·IQ by eqpqiq.com</p>'

SURVEY_TYPE_LABELS = {
    "learner_self_assessment": "Self-Assessment",
    "educator_assessment": "Resident Evaluation",
}

_PILLARS_TEXT = "Emotional Quotient (EQ), Professionalism Quotient (PQ), and Intellectual Quotient (IQ)"


def survey_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/survey/{token}"


def _deadline_html(deadline: datetime | None) -> str:
    if not deadline:
        return ""
    return f"<p><strong>Deadline:</strong> {deadline.strftime('%A, %B %d, %Y')}</p>"


def _wrap(heading: str, body: str) -> str:
    return (
        '<div style="font-family:-apple-system,Segoe UI,Roboto,sans-serif;max-width:600px;margin:0 auto;padding:24px;">'
        f"<h2>{escape(heading)}</h2>{body}{_FOOTER}</div>"
    )


def invite_context(survey_type: str, rater_type: str | None) -> str | None:
    if rater_type == "self":
        return f"Please complete your self-assessment of your {_PILLARS_TEXT}."
    if rater_type == "core_faculty":
        return f"Please rate each resident in the class on their {_PILLARS_TEXT}."
    if rater_type == "teaching_faculty":
        return (
            f"Please rate the residents you've worked with on their {_PILLARS_TEXT}. "
            "You only need to rate residents you know well enough to evaluate."
        )
    if survey_type == "educator_assessment":
        return f"Please rate each resident on their {_PILLARS_TEXT}."
    if survey_type == "learner_self_assessment":
        return f"Please complete your self-assessment of your {_PILLARS_TEXT}."
    return None


def survey_invite(*, name: str | None, survey_title: str, survey_type: str, url: str,
                  deadline: datetime | None, context: str | None) -> tuple[str, str]:
    label = SURVEY_TYPE_LABELS.get(survey_type, "Survey")
    body = (
        f"<p>Hi {escape(name or 'there')},</p>"
        f"<p>You've been invited to complete: <strong>{escape(survey_title)}</strong></p>"
        + (f"<p>{escape(context)}</p>" if context else "")
        + _deadline_html(deadline)
        + f'<p><a href="{escape(url)}">Open Survey</a></p>'
        "<p>This link is unique to you. You can save your progress and return at any time.</p>"
    )
    return f"{label}: {survey_title}", _wrap(f"EQ·PQ·IQ {label}", body)


def survey_reminder(*, name: str | None, survey_title: str, url: str,
                    deadline: datetime | None, context: str) -> tuple[str, str]:
    body = (
        f"<p>Hi {escape(name or 'there')},</p>"
        f"<p>This is a friendly reminder to complete <strong>{escape(survey_title)}</strong>.</p>"
        f"<p>{escape(context)}</p>"
        + _deadline_html(deadline)
        + f'<p><a href="{escape(url)}">Continue Survey</a></p>'
    )
    return f"Reminder: {survey_title}", _wrap("Survey Reminder", body)


def pulse_director_reminder(*, director_name: str, cycle_name: str, due_date, pending: list[str]) -> tuple[str, str]:
    items = "".join(f"<li>{escape(p)}</li>" for p in pending)
    due = due_date.strftime("%B %d, %Y") if due_date else "soon"
    body = (
        f"<p>Hi {escape(director_name)},</p>"
        f"<p>You have {len(pending)} provider review{'s' if len(pending) != 1 else ''} "
        f"pending for <strong>{escape(cycle_name)}</strong>, due {escape(due)}.</p>"
        f"<ul>{items}</ul>"
    )
    return f"Pulse Check: {len(pending)} review(s) pending", _wrap("Pulse Check Reminder", body)


def access_request_admin(*, full_name: str, email: str, requested_role: str, reason: str | None, review_url: str) -> tuple[str, str]:
    body = (
        f"<p><strong>{escape(full_name)}</strong> ({escape(email)}) requested access as "
        f"<strong>{escape(requested_role)}</strong>.</p>"
        + (f"<p>Reason: {escape(reason)}</p>" if reason else "")
        + f'<p><a href="{escape(review_url)}">Review request</a></p>'
    )
    return f"[EQ·PQ·IQ] New Access Request from {full_name}", _wrap("New Access Request", body)


def access_request_received(*, full_name: str) -> tuple[str, str]:
    body = (
        f"<p>Hi {escape(full_name)},</p>"
        "<p>We received your access request. An administrator will review it shortly "
        "and you will receive an email once a decision has been made.</p>"
    )
    return "[EQ·PQ·IQ] Access Request Received", _wrap("Access Request Received", body)


def access_request_approved(*, full_name: str, email: str, temp_password: str, login_url: str) -> tuple[str, str]:
    body = (
        f"<p>Hi {escape(full_name)},</p>"
        "<p>Your access request has been approved. Sign in with:</p>"
        f"<p>Email: <strong>{escape(email)}</strong><br/>Temporary password: <strong>{escape(temp_password)}</strong></p>"
        "<p>You will be asked to change your password after signing in.</p>"
        f'<p><a href="{escape(login_url)}">Sign in</a></p>'
    )
    return "Welcome to EQ·PQ·IQ - Your Account is Ready", _wrap("Your Account is Ready", body)


def access_request_rejected(*, full_name: str, reason: str | None) -> tuple[str, str]:
    body = (
        f"<p>Hi {escape(full_name)},</p>"
        "<p>After review, we are unable to approve your access request at this time.</p>"
        + (f"<p>Notes from the reviewer: {escape(reason)}</p>" if reason else "")
    )
    return "[EQ·PQ·IQ] Access Request Update", _wrap("Access Request Update", body)
