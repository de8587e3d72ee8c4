"""Prometheus metrics for billing jobs, settlement transitions and notifications"""

from prometheus_client import Counter, Histogram

# Generation metrics
invoices_generated_counter = Counter(
    "tuition_installment_invoices_generated_total",
    "Installment invoices generated from schedules",
)

generation_errors_counter = Counter(
    "tuition_installment_generation_errors_total",
    "Schedule rows that failed generation",
)

# Delinquency metrics
penalties_applied_counter = Counter(
    "tuition_installment_penalties_applied_total",
    "Late payment penalties added to overdue invoices",
)

removals_applied_counter = Counter(
    "tuition_installment_removals_total",
    "Invoices whose student was unenrolled for delinquency",
)

delinquency_errors_counter = Counter(
    "tuition_installment_delinquency_errors_total",
    "Overdue invoices that failed delinquency processing",
)

# Settlement metrics
settlement_transition_counter = Counter(
    "tuition_settlement_transitions_total",
    "Invoice status transitions caused by payment writes",
    ["transition"],  # into_paid | into_unpaid | none
)

# Outbox metrics
outbox_failure_counter = Counter(
    "tuition_outbox_task_failures_total",
    "Outbox task attempts that raised",
    ["task_type"],
)

# Overdue reminder metrics
overdue_reminders_sent_counter = Counter(
    "tuition_overdue_reminders_sent_total",
    "Overdue invoice reminders handed to the notification service",
)

overdue_reminder_errors_counter = Counter(
    "tuition_overdue_reminder_errors_total",
    "Invoice-student links whose overdue reminder failed",
)

job_duration_histogram = Histogram(
    "tuition_job_duration_seconds",
    "Scheduled job run time",
    ["job"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# Notification metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Receipt notification response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed receipt notification deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_generation(processed: int, errors: int) -> None:
    invoices_generated_counter.inc(processed)
    generation_errors_counter.inc(errors)


def record_delinquency(penalties: int, removals: int, errors: int) -> None:
    penalties_applied_counter.inc(penalties)
    removals_applied_counter.inc(removals)
    delinquency_errors_counter.inc(errors)


def record_settlement(previous_status: str, status: str) -> None:
    """Count the settlement by the transition it caused"""
    if status == "Paid" and previous_status != "Paid":
        transition = "into_paid"
    elif status == "Unpaid" and previous_status in ("Paid", "Partially Paid"):
        transition = "into_unpaid"
    else:
        transition = "none"

    settlement_transition_counter.labels(transition=transition).inc()


def record_overdue_reminders(sent: int, errors: int) -> None:
    overdue_reminders_sent_counter.inc(sent)
    overdue_reminder_errors_counter.inc(errors)
