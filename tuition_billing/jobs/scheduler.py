"""
Scheduler process for installment billing jobs.

Runs recurring invoice generation and the delinquency pass on daily cron
schedules in the business timezone. Overdue reminders have their own cron
schedule; the outbox is drained on an interval.
"""

import logging
from typing import Callable, Optional
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker
from tuition_billing.config import settings
from tuition_billing.infrastructure.database.session import SessionLocal
from tuition_billing.infrastructure.observability.logging import setup_logging
from tuition_billing.services.delinquency import process_installment_delinquencies
from tuition_billing.services.generation import process_due_installment_invoices
from tuition_billing.services.outbox import drain_outbox
from tuition_billing.services.overdue_reminders import process_overdue_reminders

logger = logging.getLogger("scheduled_tasks")

GENERATION_JOB_ID = "installment_invoice_generation"
DELINQUENCY_JOB_ID = "installment_delinquency"
OUTBOX_JOB_ID = "outbox_drain"
OVERDUE_REMINDER_JOB_ID = "overdue_reminders"


def run_installment_generation_job(session_factory: Optional[sessionmaker] = None) -> None:
    logger.info("Starting installment invoice generation job")
    try:
        process_due_installment_invoices(session_factory=session_factory or SessionLocal)
    except Exception as e:
        logger.error(f"Installment invoice generation job failed: {e}", exc_info=True)


def run_installment_delinquency_job(session_factory: Optional[sessionmaker] = None) -> None:
    logger.info("Starting installment delinquency job")
    try:
        process_installment_delinquencies(session_factory=session_factory or SessionLocal)
    except Exception as e:
        logger.error(f"Installment delinquency job failed: {e}", exc_info=True)


def run_outbox_drain_job(session_factory: Optional[sessionmaker] = None) -> None:
    try:
        drain_outbox(session_factory=session_factory or SessionLocal)
    except Exception as e:
        logger.error(f"Outbox drain job failed: {e}", exc_info=True)


def run_overdue_reminder_job(session_factory: Optional[sessionmaker] = None) -> None:
    logger.info("Starting overdue reminder job")
    try:
        process_overdue_reminders(session_factory=session_factory or SessionLocal)
    except Exception as e:
        logger.error(f"Overdue reminder job failed: {e}", exc_info=True)


def register_jobs(scheduler: BaseScheduler, session_factory: Optional[sessionmaker] = None) -> None:
    """Add the billing jobs; each job runs single-flight"""
    timezone = settings.business_timezone

    scheduler.add_job(
        func=run_installment_generation_job,
        trigger=CronTrigger.from_crontab(settings.installment_invoice_schedule, timezone=timezone),
        kwargs={"session_factory": session_factory},
        id=GENERATION_JOB_ID,
        name="Generate due installment invoices",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        func=run_installment_delinquency_job,
        trigger=CronTrigger.from_crontab(settings.installment_delinquency_schedule, timezone=timezone),
        kwargs={"session_factory": session_factory},
        id=DELINQUENCY_JOB_ID,
        name="Apply installment penalties and removals",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        func=run_outbox_drain_job,
        trigger="interval",
        minutes=settings.outbox_drain_interval_minutes,
        kwargs={"session_factory": session_factory},
        id=OUTBOX_JOB_ID,
        name="Drain post-commit outbox",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        func=run_overdue_reminder_job,
        trigger=CronTrigger.from_crontab(settings.overdue_reminder_schedule, timezone=timezone),
        kwargs={"session_factory": session_factory},
        id=OVERDUE_REMINDER_JOB_ID,
        name="Send one-time overdue invoice reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )


def run_startup_jobs(
    session_factory: Optional[sessionmaker] = None,
    generation: Callable[..., None] = run_installment_generation_job,
    delinquency: Callable[..., None] = run_installment_delinquency_job,
    reminders: Callable[..., None] = run_overdue_reminder_job,
) -> None:
    """Run the cron jobs once at boot when their startup flags are set"""
    if settings.run_installment_invoice_on_startup:
        generation(session_factory=session_factory)
    if settings.run_installment_delinquency_on_startup:
        delinquency(session_factory=session_factory)
    if settings.run_overdue_reminders_on_startup:
        reminders(session_factory=session_factory)


def build_scheduler(session_factory: Optional[sessionmaker] = None) -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=settings.business_timezone)
    register_jobs(scheduler, session_factory)
    return scheduler


def main() -> None:
    setup_logging(settings.log_level)
    scheduler = build_scheduler()
    run_startup_jobs()

    logger.info(
        "Scheduled tasks initialized",
        extra={
            "generation_schedule": settings.installment_invoice_schedule,
            "delinquency_schedule": settings.installment_delinquency_schedule,
            "overdue_reminder_schedule": settings.overdue_reminder_schedule,
            "timezone": settings.business_timezone,
        },
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
