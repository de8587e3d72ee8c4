"""Date manipulation utilities"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
from dateutil.relativedelta import relativedelta
from tuition_billing.config import settings


def add_months(from_date: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month (Jan 31 + 1 -> Feb 28/29)"""
    return from_date + relativedelta(months=months)


def first_of_month(value: date) -> date:
    return value.replace(day=1)


def business_today() -> date:
    """Today's date in the business timezone"""
    return datetime.now(ZoneInfo(settings.business_timezone)).date()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
