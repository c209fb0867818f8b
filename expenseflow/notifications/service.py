"""Notification service — outbound email and workflow dispatchers.

Delivery is best effort and happens only after the triggering transition
has committed: a failed send is logged and never reaches the workflow, and
a rolled-back transition sends nothing.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from expenseflow.common.constants import RequestStatus
from expenseflow.config import settings

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Plain-text email over SMTP."""

    @staticmethod
    def _send_sync(to_email: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = settings.SMTP_FROM
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        ) as smtp:
            smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(message)

    @staticmethod
    async def send(to_email: str, subject: str, body: str) -> None:
        """Send one message; without ``SMTP_HOST`` the message is only logged."""
        if not settings.SMTP_HOST:
            logger.info("[MAIL FALLBACK] To: %s | %s | %s", to_email, subject, body)
            return
        await asyncio.to_thread(NotificationService._send_sync, to_email, subject, body)


async def notify_best_effort(to_email: Optional[str], subject: str, body: str) -> bool:
    """Send and swallow delivery errors. Returns whether the send succeeded."""
    if not to_email:
        logger.warning("notification %r skipped: recipient has no email", subject)
        return False
    try:
        await NotificationService.send(to_email, subject, body)
    except Exception:
        logger.exception("notification %r to %s failed", subject, to_email)
        return False
    return True


# ── Cross-module helper dispatchers ─────────────────────────────────
# The expenses workflow queues notices on its session; routers hand them
# to a background task once the transaction has committed.

_PENDING_KEY = "pending_notices"


@dataclass(frozen=True)
class StatusNotice:
    to_email: Optional[str]
    subject: str
    body: str


_STATUS_MESSAGES: dict[RequestStatus, tuple[str, str]] = {
    RequestStatus.under_review: (
        "ExpenseFlow: Request submitted",
        "Your request {number} is now under review.",
    ),
    RequestStatus.draft: (
        "ExpenseFlow: Request withdrawn",
        "Your request {number} was withdrawn and is back in draft.",
    ),
    RequestStatus.approved: (
        "ExpenseFlow: Request approved",
        "Your request {number} was approved.",
    ),
    RequestStatus.rejected: (
        "ExpenseFlow: Request rejected",
        "Your request {number} was rejected. Comment: {comment}",
    ),
    RequestStatus.returned: (
        "ExpenseFlow: Request returned",
        "Your request {number} was returned. Comment: {comment}",
    ),
    RequestStatus.payment_processing: (
        "ExpenseFlow: Payment processing",
        "Your request {number} is in payment processing.",
    ),
    RequestStatus.paid: (
        "ExpenseFlow: Payment completed",
        "Your request {number} has been paid.",
    ),
}


def build_status_notice(
    expense_request,  # expenseflow.expenses.models.ExpenseRequest
    to_email: Optional[str],
    comment: Optional[str] = None,
) -> Optional[StatusNotice]:
    """Render the owner's message for the request's current status."""
    template = _STATUS_MESSAGES.get(expense_request.status)
    if template is None:
        return None
    subject, body = template
    return StatusNotice(
        to_email=to_email,
        subject=subject,
        body=body.format(number=expense_request.request_number, comment=comment or ""),
    )


def queue_notice(db: AsyncSession, notice: Optional[StatusNotice]) -> None:
    """Hold *notice* until the session's transaction commits."""
    if notice is not None:
        db.info.setdefault(_PENDING_KEY, []).append(notice)


def take_pending_notices(db: AsyncSession) -> list[StatusNotice]:
    """Remove and return everything queued on *db*."""
    return db.info.pop(_PENDING_KEY, [])


async def dispatch_notices(notices: list[StatusNotice]) -> None:
    """Background task: deliver queued notices one by one, best effort."""
    for notice in notices:
        await notify_best_effort(notice.to_email, notice.subject, notice.body)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending_notices(session: Session, previous_transaction) -> None:
    if session.info.pop(_PENDING_KEY, None):
        logger.info("discarded notifications of a rolled-back transaction")
