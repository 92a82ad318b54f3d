"""Fire-and-forget email notifications for request transitions."""

from __future__ import annotations

import smtplib
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from email.message import EmailMessage
from threading import Lock
from typing import Optional, Sequence

from labreserve.domain.models import LabRequest, LabSystem, RequestStatus
from labreserve.utils.config import Settings, get_settings
from labreserve.utils.logger import format_ids, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    recipient: str
    subject: str
    body: str
    request_id: str


def build_transition_notification(
    request: LabRequest,
    systems: Sequence[LabSystem],
    email_domain: str,
) -> Optional[Notification]:
    """Compose the message for a request that just reached a terminal status."""
    recipient = f"{request.requester_login_id.lower()}@{email_domain}"
    when = f"{request.date} {request.window.start}-{request.window.end}"
    if request.status is RequestStatus.APPROVED:
        if request.allocated_systems:
            slot = systems[0].assignment.time_slot if systems and systems[0].assignment else when
            subject = "Lab request approved: systems allocated"
            body = (
                f"Hello {request.requester_name},\n\n"
                f"Your lab request for {when} was approved. "
                f"Allocated systems: {format_ids(f'#{sid}' for sid in request.allocated_systems)} "
                f"for {slot}.\n"
            )
        else:
            subject = "Lab request approved"
            body = (
                f"Hello {request.requester_name},\n\n"
                f"Your lab request for {when} was approved. "
                "Systems will be assigned by the lab administrator.\n"
            )
    elif request.status is RequestStatus.REJECTED:
        subject = "Lab request rejected"
        body = f"Hello {request.requester_name},\n\nYour lab request for {when} was rejected.\n"
    elif request.status is RequestStatus.CANCELLED:
        subject = "Lab request cancelled"
        body = f"Hello {request.requester_name},\n\nYour lab request for {when} was cancelled.\n"
    else:
        return None
    return Notification(
        recipient=recipient,
        subject=subject,
        body=body,
        request_id=request.request_id,
    )


class NotificationService:
    """Formats and delivers notifications on a background worker.

    Every message lands in a bounded in-memory outbox; SMTP delivery happens
    only when SMTP_SERVER is configured. Failures are logged and never reach
    the caller.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self._settings.notification_workers),
            thread_name_prefix="notifier",
        )
        self._outbox: deque[Notification] = deque(
            maxlen=max(1, self._settings.notification_outbox_size)
        )
        self._lock = Lock()
        self._pending: set[Future] = set()

    @property
    def outbox(self) -> list[Notification]:
        with self._lock:
            return list(self._outbox)

    def request_transitioned(
        self,
        request: LabRequest,
        systems: Sequence[LabSystem] = (),
    ) -> None:
        if not self._settings.notifications_enabled:
            return
        notification = build_transition_notification(
            request,
            systems,
            self._settings.notification_email_domain,
        )
        if notification is None:
            return
        try:
            future = self._executor.submit(self._deliver, notification)
        except RuntimeError:
            logger.warning("Notifier shut down; dropping notice for %s", request.request_id)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, notification: Notification) -> None:
        with self._lock:
            self._outbox.append(notification)
        server = self._settings.smtp_server
        if not server:
            return
        message = EmailMessage()
        message["Subject"] = notification.subject
        message["From"] = self._settings.notification_sender
        message["To"] = notification.recipient
        message.set_content(notification.body)
        try:
            with smtplib.SMTP(server, timeout=self._settings.store_timeout_seconds) as smtp:
                smtp.send_message(message)
        except (OSError, smtplib.SMTPException):
            logger.exception(
                "Notification delivery failed | request_id=%s | recipient=%s",
                notification.request_id,
                notification.recipient,
            )

    def wait_idle(self, timeout: float = 5.0) -> bool:
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self._executor.shutdown(wait=True)
