"""Structured JSON logging for billing jobs and payment writes"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger
from tuition_billing.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_job_summary(job: str, summary: Dict[str, Any], duration_ms: float) -> None:
    """Log the outcome of one scheduled job run for analysis"""
    logging.info(
        "Job completed",
        extra={
            "job": job,
            "step": "job_complete",
            "duration_ms": duration_ms,
            **summary,
        },
    )


def log_settlement(
    request_id: Optional[str],
    invoice_id: int,
    action: str,
    previous_status: str,
    status: str,
    remaining_cents: int,
) -> None:
    """Log a payment-driven invoice settlement"""
    logging.info(
        "Settlement applied",
        extra={
            "request_id": request_id,
            "invoice_id": invoice_id,
            "step": "settlement_complete",
            "payment_action": action,
            "previous_status": previous_status,
            "invoice_status": status,
            "remaining_cents": remaining_cents,
        },
    )
