"""
No-show detection and its background scheduler.

Every few minutes the scheduler marks pending or confirmed appointments as
no_show once their start time plus the grace period has passed without the
customer checking in. The same run expires stale pending payments.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.cron import CronTrigger  # type: ignore
from sqlalchemy.orm import Session

from core.config import NO_SHOW_GRACE_MINUTES
from core.constants import NO_SHOW_CHECK_INTERVAL_MINUTES, SCHEDULER_MAX_INSTANCES
from core.database import get_db_context
from core.exceptions import BookingError
from models import Appointment
from services.appointment_state_machine import AppointmentStateMachine
from services.payment_service import PaymentService
from shared_types.workflow import Actor, AppointmentStatus
from utils.datetime_utils import CENTER_TZ, center_now, combine_local, to_center_naive

logger = logging.getLogger(__name__)

_NO_SHOW_SOURCES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

# Global singleton instance
_no_show_scheduler: Optional['NoShowScheduler'] = None


class NoShowService:

    @staticmethod
    def find_overdue(db: Session, now: datetime, grace_minutes: int = NO_SHOW_GRACE_MINUTES) -> List[Appointment]:
        """Pending/confirmed appointments whose start + grace is at or before ``now``."""
        cutoff = to_center_naive(now) - timedelta(minutes=grace_minutes)
        candidates = db.query(Appointment).filter(
            Appointment.status.in_(_NO_SHOW_SOURCES),
            Appointment.arrived_at.is_(None),
            Appointment.scheduled_date <= cutoff.date(),
        ).order_by(Appointment.scheduled_date, Appointment.scheduled_time).all()
        return [
            appointment for appointment in candidates
            if combine_local(appointment.scheduled_date, appointment.scheduled_time) <= cutoff
        ]

    @staticmethod
    def mark_overdue_no_shows(db: Session, now: Optional[datetime] = None) -> List[int]:
        """
        Move overdue appointments to no_show as the system actor.

        One failing appointment does not stop the others.

        Returns:
            IDs of appointments marked as no_show
        """
        now = now or center_now()
        marked: List[int] = []
        for appointment in NoShowService.find_overdue(db, now):
            appointment_id = appointment.id
            try:
                locked = AppointmentStateMachine.load_for_update(db, appointment_id)
                AppointmentStateMachine.transition(
                    db, locked, AppointmentStatus.NO_SHOW, Actor.system(),
                    reason=f"Customer did not arrive within {NO_SHOW_GRACE_MINUTES} minutes",
                )
                marked.append(appointment_id)
            except BookingError as e:
                logger.warning(f"Could not mark appointment {appointment_id} as no-show: {e.message}")
        if marked:
            logger.info(f"Marked {len(marked)} appointment(s) as no-show")
        return marked


class NoShowScheduler:
    """
    Scheduler for periodic booking housekeeping.

    Runs every NO_SHOW_CHECK_INTERVAL_MINUTES to mark no-shows and expire
    stale pending payments.
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=CENTER_TZ)
        self._is_started = False

    async def start_scheduler(self) -> None:
        """Start the background scheduler. Called during application startup."""
        if self._is_started:
            logger.warning("No-show scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._run_checks,
            CronTrigger(minute=f"*/{NO_SHOW_CHECK_INTERVAL_MINUTES}"),
            id="no_show_check",
            name="No-show detection and payment expiry",
            replace_existing=True,
            max_instances=SCHEDULER_MAX_INSTANCES,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(f"No-show scheduler started (runs every {NO_SHOW_CHECK_INTERVAL_MINUTES} minutes)")

    async def stop_scheduler(self) -> None:
        """Stop the background scheduler. Called during application shutdown."""
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("No-show scheduler stopped")

    async def _run_checks(self) -> None:
        # Blocking database work runs off the event loop
        await asyncio.to_thread(self._execute_checks)

    def _execute_checks(self) -> None:
        # Fresh session per run to avoid stale state
        with get_db_context() as db:
            try:
                NoShowService.mark_overdue_no_shows(db)
                PaymentService.expire_stale_payments(db)
            except Exception as e:
                logger.exception(f"Error during scheduled no-show check: {e}")
                # Don't re-raise - allow scheduler to continue


def get_no_show_scheduler() -> NoShowScheduler:
    """Get the global no-show scheduler instance."""
    global _no_show_scheduler
    if _no_show_scheduler is None:
        _no_show_scheduler = NoShowScheduler()
    return _no_show_scheduler


async def start_no_show_scheduler() -> None:
    scheduler = get_no_show_scheduler()
    await scheduler.start_scheduler()


async def stop_no_show_scheduler() -> None:
    scheduler = get_no_show_scheduler()
    await scheduler.stop_scheduler()
