"""Durable post-commit tasks written atomically with payment writes"""

import logging
import uuid
from datetime import date
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session, sessionmaker
from tuition_billing.config import settings
from tuition_billing.domain.models import DrainResult, OutboxStatus
from tuition_billing.infrastructure.database.models import OutboxTask
from tuition_billing.infrastructure.database.repositories import OutboxRepository
from tuition_billing.infrastructure.database.session import SessionLocal
from tuition_billing.infrastructure.observability.metrics import outbox_failure_counter
from tuition_billing.services.generation import generate_installment_invoice
from tuition_billing.utils.date_utils import business_today, utcnow

logger = logging.getLogger(__name__)

GENERATE_FIRST_INSTALLMENT = "generate_first_installment"


def enqueue_first_installment(db: Session, scheduled_installment_id: int) -> OutboxTask:
    """Queue generation of a profile's first installment invoice"""
    return OutboxRepository(db).enqueue(
        GENERATE_FIRST_INSTALLMENT,
        {"scheduled_installment_id": scheduled_installment_id},
    )


def _run_task(db: Session, task_type: str, payload: Dict[str, Any], today: date) -> None:
    if task_type == GENERATE_FIRST_INSTALLMENT:
        schedule_id = payload["scheduled_installment_id"]
        detail = generate_installment_invoice(db, schedule_id, today, require_due=False)
        if detail is None:
            # Row was reverted, already generated or is being generated elsewhere
            logger.info("First installment no longer generatable", extra={"installment_id": schedule_id})
        return

    raise ValueError(f"Unknown outbox task type: {task_type}")


def _record_failure(session_factory: sessionmaker, task_id: uuid.UUID, error: Exception) -> None:
    with session_factory() as db, db.begin():
        task = db.get(OutboxTask, task_id)
        if task is None:
            return
        task.attempts = (task.attempts or 0) + 1
        task.last_attempt_at = utcnow()
        task.last_error = str(error)
        if task.attempts >= settings.outbox_max_attempts:
            task.status = OutboxStatus.FAILED

        outbox_failure_counter.labels(task_type=task.task_type).inc()
        logger.error(
            f"Outbox task failed: {error}",
            extra={"task_id": str(task_id), "task_type": task.task_type, "attempts": task.attempts},
        )


def drain_outbox(
    session_factory: Optional[sessionmaker] = None,
    today: Optional[date] = None,
    limit: Optional[int] = None,
) -> DrainResult:
    """
    Run pending outbox tasks, each in its own transaction.

    A failed task is rolled back, its attempt recorded, and it is retried on
    the next drain until outbox_max_attempts marks it failed.
    """
    session_factory = session_factory or SessionLocal
    today = today or business_today()

    with session_factory() as db:
        task_ids = OutboxRepository(db).pending_ids(limit or settings.outbox_batch_size)

    result = DrainResult()
    for task_id in task_ids:
        try:
            with session_factory() as db, db.begin():
                task = OutboxRepository(db).lock(task_id)
                if task is None:
                    continue
                result.attempted += 1
                _run_task(db, task.task_type, task.payload or {}, today)
                task.attempts = (task.attempts or 0) + 1
                task.last_attempt_at = utcnow()
                task.last_error = None
                task.status = OutboxStatus.DONE
        except Exception as e:
            result.failed += 1
            _record_failure(session_factory, task_id, e)
            continue

        if task is not None:
            result.succeeded += 1

    if result.attempted:
        logger.info(
            "Outbox drained",
            extra={"attempted": result.attempted, "succeeded": result.succeeded, "failed": result.failed},
        )
    return result
