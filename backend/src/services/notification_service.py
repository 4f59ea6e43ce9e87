# pyright: reportMissingTypeStubs=false
"""
Notification boundary for appointment status changes.

When NOTIFICATION_WEBHOOK_URL is set, each accepted transition is POSTed as
JSON to that URL (the email/push delivery service lives behind it). When it
is unset, the event is only logged. Delivery errors are raised to the caller,
which records them as side-effect failures without touching the transition.
"""

import logging
from typing import Any, Optional

import httpx

from core.config import NOTIFICATION_TIMEOUT_SECONDS, NOTIFICATION_WEBHOOK_URL
from models import Appointment
from shared_types.workflow import Actor
from utils.datetime_utils import center_now, format_time

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for publishing appointment events to the notification webhook."""

    @staticmethod
    def build_status_change_payload(
        appointment: Appointment,
        from_status: Optional[str],
        to_status: str,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        return {
            "event": "appointment.status_changed",
            "appointment_id": appointment.id,
            "appointment_number": appointment.appointment_number,
            "customer_id": appointment.customer_id,
            "technician_id": appointment.assigned_technician_id,
            "scheduled_date": appointment.scheduled_date.isoformat(),
            "scheduled_time": format_time(appointment.scheduled_time),
            "from_status": from_status,
            "to_status": to_status,
            "actor_role": actor.role.value,
            "actor_id": actor.user_id,
            "reason": reason,
            "sent_at": center_now().isoformat(),
        }

    @staticmethod
    def notify_status_change(
        appointment: Appointment,
        from_status: Optional[str],
        to_status: str,
        actor: Actor,
        reason: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> bool:
        """
        Publish a status change.

        Args:
            appointment: Appointment that changed
            from_status: Previous status (None for creation)
            to_status: New status
            actor: Who performed the change
            reason: Free-text reason recorded with the change
            webhook_url: Override of NOTIFICATION_WEBHOOK_URL

        Returns:
            True if the webhook accepted the event, False if no webhook is configured

        Raises:
            httpx.HTTPError: If the webhook cannot be reached or rejects the event
        """
        url = webhook_url if webhook_url is not None else NOTIFICATION_WEBHOOK_URL
        payload = NotificationService.build_status_change_payload(
            appointment, from_status, to_status, actor, reason
        )

        if not url:
            logger.info(
                f"Appointment {appointment.appointment_number}: {from_status} -> {to_status} "
                f"(no notification webhook configured)"
            )
            return False

        response = httpx.post(url, json=payload, timeout=NOTIFICATION_TIMEOUT_SECONDS)
        response.raise_for_status()
        logger.debug(f"Notified status change for appointment {appointment.id}: {to_status}")
        return True
