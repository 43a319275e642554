import logging
import os
import uuid
from datetime import date, datetime, timezone


def uuid4_string():
    """Return uuid4 string without the dashes."""
    return str(uuid.uuid4()).replace('-', '')


def utcnow():
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def calendar_age(dob: date, today: date = None) -> int:
    """Whole years elapsed from dob to today.

    A birthday not yet reached this year doesn't count."""
    if today is None:
        today = date.today()
    not_yet = (today.month, today.day) < (dob.month, dob.day)
    return today.year - dob.year - (1 if not_yet else 0)


def postgres_connstr(dbname=None):
    """libpq connection string from POSTGRES_HOST, POSTGRES_USER, POSTGRES_DB."""
    return ' '.join([
        "host=%s" % os.getenv('POSTGRES_HOST', 'localhost'),
        "user=%s" % os.getenv('POSTGRES_USER', 'postgres'),
        "dbname=%s" % (dbname or os.getenv('POSTGRES_DB', 'postgres'))])


def logging_basic_config(level=None):
    """basicConfig with a standard logging format.

    If level is not given, default to env var LOG_LEVEL, or WARNING."""
    if not level:
        level = os.getenv('LOG_LEVEL', 'WARNING')
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
