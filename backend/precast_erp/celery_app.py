"""
Celery worker: post-commit activity and notification tasks, and FCM push delivery from the outbox with SELECT FOR UPDATE SKIP LOCKED.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import requests
from celery import Celery
from sqlalchemy import select, text, union

from .config import settings
from .database import SessionLocal
from .models import (
    ActivityLog,
    Client,
    EndClient,
    Notification,
    NotificationOutbox,
    Project,
    ProjectMember,
    User,
)
from .use_cases.common import KIND_ACTIVITY, KIND_PROJECT_NOTIFICATION

logger = logging.getLogger(__name__)

celery_app = Celery(
    "precast_erp",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

# FCM result errors meaning the device token is gone for good.
INVALID_TOKEN_ERRORS = frozenset({"NotRegistered", "InvalidRegistration", "MismatchSenderId"})
DEFAULT_RETRY_AFTER_SECONDS = 60


def interpret_fcm_response(
    status_code: int,
    body: dict[str, Any] | None,
    retry_after: str | None = None,
) -> tuple[bool, str | None]:
    """Map an FCM legacy HTTP response to (delivered, error_code)."""
    if status_code == 200:
        results = (body or {}).get("results") or [{}]
        error = results[0].get("error")
        if error is None:
            return True, None
        if error in INVALID_TOKEN_ERRORS:
            return False, "TOKEN_INVALID"
        return False, f"FCM_{error}"
    if status_code == 429:
        try:
            seconds = int(retry_after) if retry_after else DEFAULT_RETRY_AFTER_SECONDS
        except ValueError:
            seconds = DEFAULT_RETRY_AFTER_SECONDS
        return False, f"RATE_LIMIT:{seconds}"
    return False, f"HTTP_{status_code}"


def send_push_message(token: str, title: str, message: str, data: dict[str, Any] | None = None) -> tuple[bool, str | None]:
    """Send one push message via FCM."""
    if not settings.FCM_SERVER_KEY:
        return False, "FCM_NOT_CONFIGURED"

    try:
        response = requests.post(
            settings.FCM_ENDPOINT,
            json={
                "to": token,
                "notification": {"title": title, "body": message},
                "data": data or {},
            },
            headers={"Authorization": f"key={settings.FCM_SERVER_KEY}"},
            timeout=10,
        )
    except requests.RequestException as e:
        return False, f"EXCEPTION: {e}"

    body = None
    if response.status_code == 200:
        try:
            body = response.json()
        except ValueError:
            return False, "FCM_INVALID_RESPONSE"
    return interpret_fcm_response(response.status_code, body, response.headers.get("Retry-After"))


def retry_backoff_seconds(attempts: int) -> int:
    return 2 ** attempts * 60  # 2min, 4min, 8min


def apply_delivery_result(
    notification: NotificationOutbox,
    *,
    success: bool,
    error: str | None,
    now: datetime,
    recipient: User | None = None,
) -> str:
    """Update outbox row state after one delivery attempt; returns the resulting status."""
    if success:
        notification.status = 'sent'
        notification.sent_at = now
        notification.last_error = None
        return notification.status

    notification.attempts = (notification.attempts or 0) + 1
    notification.last_error = error

    if error and error.startswith("RATE_LIMIT:"):
        retry_after = int(error.split(":")[1])
        notification.next_retry_at = now + timedelta(seconds=retry_after)
        logger.warning("Push rate limited for %ss: %s", retry_after, notification.id)
    elif error == "TOKEN_INVALID":
        notification.status = 'failed'
        notification.failed_at = now
        if recipient is not None and recipient.fcm_token == notification.recipient_token:
            recipient.fcm_token = None
            logger.warning("Cleared stale push token of user %s", recipient.id)
    elif notification.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
        notification.status = 'failed'
        notification.failed_at = now
        logger.error("Push %s failed after %s attempts: %s", notification.id, notification.attempts, error)
    else:
        backoff_seconds = retry_backoff_seconds(notification.attempts)
        notification.next_retry_at = now + timedelta(seconds=backoff_seconds)
        logger.warning(
            "Retry %s/%s in %ss: %s",
            notification.attempts, settings.NOTIFICATION_MAX_ATTEMPTS, backoff_seconds, notification.id,
        )
    return notification.status


@celery_app.task(name="process_notification_outbox")
def process_notification_outbox(batch_size: int = 100):
    """
    Deliver pending push notifications.

    Rows are locked with FOR UPDATE SKIP LOCKED so concurrent workers never pick the same row.
    """
    db = SessionLocal()
    processed_count = 0
    notification_ids: list[int] = []

    try:
        query = text("""
            SELECT id
            FROM notification_outbox
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= NOW())
            ORDER BY created_at
            LIMIT :batch_size
            FOR UPDATE SKIP LOCKED
        """)

        result = db.execute(query, {"batch_size": batch_size})
        notification_ids = [row[0] for row in result.fetchall()]

        logger.info("Locked %s push notifications for processing", len(notification_ids))

        for notif_id in notification_ids:
            notification = db.query(NotificationOutbox).filter(
                NotificationOutbox.id == notif_id
            ).first()

            if notification is None:
                continue
            if not notification.recipient_token:
                notification.status = 'skipped'
                notification.last_error = "No push token"
                continue

            success, error = send_push_message(
                notification.recipient_token,
                notification.title,
                notification.message,
                notification.meta_data,
            )
            recipient = None
            if error == "TOKEN_INVALID":
                recipient = db.query(User).filter(User.id == notification.recipient_user_id).first()

            status = apply_delivery_result(
                notification,
                success=success,
                error=error,
                now=datetime.now(timezone.utc),
                recipient=recipient,
            )
            if status == 'sent':
                processed_count += 1
                logger.info("Sent push notification %s", notif_id)

        db.commit()
        logger.info("Processed %s/%s push notifications", processed_count, len(notification_ids))

    except Exception:
        db.rollback()
        logger.error("Error processing notification outbox", exc_info=True)
        raise

    finally:
        db.close()

    return {"processed": processed_count, "total_locked": len(notification_ids)}




def _emitted_at(value: str | None) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now(timezone.utc)


@celery_app.task(name="record_activity")
def record_activity(payload: dict[str, Any], emitted_at: str | None = None):
    """Write one activity log row for a committed business action."""
    db = SessionLocal()

    try:
        db.add(
            ActivityLog(
                event_context=payload["event_context"],
                event_name=payload["event_name"],
                description=payload["description"],
                user_name=payload.get("user_name"),
                host_name=payload.get("host_name"),
                ip_address=payload.get("ip_address"),
                project_id=payload.get("project_id"),
                created_at=_emitted_at(emitted_at),
            )
        )
        db.commit()

    except Exception:
        db.rollback()
        logger.error("Error recording activity", exc_info=True)
        raise

    finally:
        db.close()


def project_stakeholder_ids(db, project_id: int) -> list[int]:
    """Project members plus the user owning the project's client account."""
    members = select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
    client_owner = (
        select(Client.user_id)
        .join(EndClient, EndClient.client_id == Client.client_id)
        .join(Project, Project.client_id == EndClient.id)
        .where(Project.project_id == project_id, Client.user_id.is_not(None))
    )
    rows = db.execute(union(members, client_owner)).all()
    return sorted({row[0] for row in rows})


@celery_app.task(name="fan_out_project_notification")
def fan_out_project_notification(payload: dict[str, Any], emitted_at: str | None = None):
    """
    One in-app notification per project stakeholder, plus one outbox row per push token.
    """
    project_id = payload["project_id"]
    message = payload["message"]
    action = payload.get("action")
    reference = payload.get("reference") or f"{KIND_PROJECT_NOTIFICATION}:{_emitted_at(emitted_at).isoformat()}"

    db = SessionLocal()
    queued_push = 0

    try:
        user_ids = project_stakeholder_ids(db, project_id)
        if not user_ids:
            logger.info("No stakeholders to notify for project %s", project_id)
            return {"notified": 0, "queued_push": 0}

        users = db.query(User).filter(User.id.in_(user_ids), User.is_active == True).all()  # noqa: E712
        for user in users:
            db.add(Notification(user_id=user.id, message=message, status="unread", action=action))
            if not user.fcm_token:
                continue

            idempotency_key = f"{reference}:{user.id}"
            existing = db.query(NotificationOutbox.id).filter(
                NotificationOutbox.idempotency_key == idempotency_key
            ).first()
            if existing:
                logger.info("Skipping duplicate push notification: %s", idempotency_key)
                continue

            db.add(
                NotificationOutbox(
                    project_id=project_id,
                    recipient_user_id=user.id,
                    recipient_token=user.fcm_token,  # Snapshot at creation time
                    title=payload.get("title") or settings.APP_NAME,
                    message=message,
                    meta_data={"action": action, "reference": reference},
                    idempotency_key=idempotency_key,
                    status='pending',
                    attempts=0,
                )
            )
            queued_push += 1

        db.commit()
        logger.info("Notified %s users for project %s (%s push queued)", len(users), project_id, queued_push)

    except Exception:
        db.rollback()
        logger.error("Error creating project notifications", exc_info=True)
        raise

    finally:
        db.close()

    return {"notified": len(users), "queued_push": queued_push}


SIDE_EFFECT_TASKS = {
    KIND_ACTIVITY: record_activity,
    KIND_PROJECT_NOTIFICATION: fan_out_project_notification,
}


def enqueue_side_effect(kind: str, payload: dict[str, Any]):
    """Queue the task handling `kind` on the broker; unknown kinds are logged and dropped."""
    task = SIDE_EFFECT_TASKS.get(kind)
    if task is None:
        logger.warning("No task registered for %s side effect", kind)
        return None
    return task.delay(dict(payload), datetime.now(timezone.utc).isoformat())


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-outbox-every-30s': {
        'task': 'process_notification_outbox',
        'schedule': 30.0,
    },
}
