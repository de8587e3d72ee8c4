"""Installment schedule arithmetic and phase progression rules"""

import re
from datetime import date, timedelta
from typing import Optional
from tuition_billing.utils.date_utils import add_months, first_of_month

# Generated invoices are due a fixed week after issue
INVOICE_DUE_OFFSET_DAYS = 7

_FREQUENCY_PATTERN = re.compile(r"(\d+)\s*month", re.IGNORECASE)
_CLASS_ID_PATTERN = re.compile(r"CLASS_ID:(\d+)")
_PHASE_START_PATTERN = re.compile(r"PHASE_START:(\d+)")
_PHASE_END_PATTERN = re.compile(r"PHASE_END:(\d+)")


def parse_frequency(frequency: Optional[str]) -> int:
    """
    Number of months in a frequency string.

    "1 month(s)" -> 1, "3 Months" -> 3. Missing or unparseable values bill monthly.
    """
    if not frequency:
        return 1

    match = _FREQUENCY_PATTERN.search(frequency)
    if match:
        months = int(match.group(1))
        return months if months > 0 else 1

    return 1


def calculate_next_generation_date(current: date, frequency: Optional[str]) -> date:
    return add_months(current, parse_frequency(frequency))


def calculate_next_invoice_month(current_invoice_month: date, frequency: Optional[str]) -> date:
    """First day of the billing month `frequency` months after the current one"""
    return add_months(first_of_month(current_invoice_month), parse_frequency(frequency))


def calculate_due_date(issue_date: date) -> date:
    return issue_date + timedelta(days=INVOICE_DUE_OFFSET_DAYS)


def next_phase(highest_phase: int, total_phases: Optional[int]) -> Optional[int]:
    """
    Phase unlocked by the next paid installment.

    Returns None when the student already holds the last phase, so progression
    never goes backwards and never passes the class's phase count.
    """
    candidate = highest_phase + 1
    if total_phases is not None:
        candidate = min(candidate, total_phases)

    if candidate <= highest_phase:
        return None
    return candidate


def parse_class_id(remarks: Optional[str]) -> Optional[int]:
    if not remarks:
        return None
    match = _CLASS_ID_PATTERN.search(remarks)
    return int(match.group(1)) if match else None


def parse_phase_range(remarks: Optional[str], total_phases: int) -> tuple[int, int]:
    """
    Phase range a full-payment invoice covers.

    Defaults to the whole class; PHASE_START/PHASE_END tags narrow it for phase
    packages. The result is clamped to [1, total_phases] with end >= start.
    """
    phase_start = 1
    phase_end = total_phases

    if remarks:
        start_match = _PHASE_START_PATTERN.search(remarks)
        if start_match:
            phase_start = int(start_match.group(1)) or 1

        end_match = _PHASE_END_PATTERN.search(remarks)
        if end_match:
            phase_end = int(end_match.group(1)) or phase_start

    phase_start = min(max(phase_start, 1), total_phases)
    phase_end = min(phase_end, total_phases)
    if phase_end < phase_start:
        phase_end = phase_start

    return phase_start, phase_end
