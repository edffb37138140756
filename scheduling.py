from collections import namedtuple
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

# ---------------- CONSTANTS ----------------
OVERDUE = 'Overdue'
DUE_SOON = 'Due Soon'
SCHEDULED = 'Scheduled'

ALERT_WINDOW_DAYS = 30

AS_NEEDED = 'As Needed'

# relativedelta clamps to the last day of the target month (Jan 31 + 1 month -> Feb 28/29)
FREQUENCY_STEPS = {
    'Daily': relativedelta(days=1),
    'Weekly': relativedelta(days=7),
    'Monthly': relativedelta(months=1),
    'Quarterly': relativedelta(months=3),
    'Semi-Annual': relativedelta(months=6),
    'Annual': relativedelta(years=1),
}

FREQUENCIES = list(FREQUENCY_STEPS) + [AS_NEEDED]

Rollover = namedtuple('Rollover', ['last_performed', 'next_due'])


class InvalidSchedule(ValueError):
    """Raised when a schedule cannot be classified or rolled over."""


# ---------------- UTILITIES ----------------
def _start_of(value):
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value


def classify_date(due, now, window_days=ALERT_WINDOW_DAYS):
    """
    Classify a due date against now.
    The due date counts from the start of its day, so anything due today is overdue.
    """
    due_at = _start_of(due)
    now = _start_of(now)
    if due_at <= now:
        return OVERDUE
    if due_at <= now + timedelta(days=window_days):
        return DUE_SOON
    return SCHEDULED


def classify(schedule, now, window_days=ALERT_WINDOW_DAYS):
    if schedule.next_due is None:
        raise InvalidSchedule("Schedule has no next due date")
    return classify_date(schedule.next_due, now, window_days)


def advance(schedule, completed_on):
    """
    Roll a schedule over after maintenance was performed on completed_on.
    frequency_interval is informational; only the named frequency sets the step.
    Returns a Rollover; the schedule itself is left untouched.
    """
    if schedule.next_due is None:
        raise InvalidSchedule("Schedule has no next due date")
    if schedule.frequency == AS_NEEDED:
        raise InvalidSchedule("As Needed schedules have no automatic next due date; set it explicitly")
    step = FREQUENCY_STEPS.get(schedule.frequency)
    if step is None:
        raise InvalidSchedule(f"Unrecognised frequency: {schedule.frequency!r}")

    completed_on = _as_date(completed_on)
    return Rollover(last_performed=completed_on, next_due=completed_on + step)


# ---------------- ALERTS ----------------
SEVERITY_ORDER = {'high': 0, 'medium': 1, 'low': 2}


def collect_alerts(schedules, equipment, now, window_days=ALERT_WINDOW_DAYS):
    alerts = []

    for s in schedules:
        if not s.is_active or s.next_due is None:
            continue
        name = s.equipment.equipment_name if s.equipment else 'Unknown equipment'
        status = classify(s, now, window_days)
        if status == OVERDUE:
            alerts.append({
                'id': f'overdue-{s.id}',
                'type': 'overdue',
                'title': f'Overdue Maintenance: {name}',
                'description': f'{s.maintenance_type} is overdue since {s.next_due.strftime("%b %d, %Y")}',
                'severity': 'high',
            })
        elif status == DUE_SOON:
            alerts.append({
                'id': f'due-soon-{s.id}',
                'type': 'due_soon',
                'title': f'Maintenance Due Soon: {name}',
                'description': f'{s.maintenance_type} is due on {s.next_due.strftime("%b %d, %Y")}',
                'severity': 'low',
            })

    for eq in equipment:
        if eq.warranty_expiry is None:
            continue
        if classify_date(eq.warranty_expiry, now, window_days) == DUE_SOON:
            alerts.append({
                'id': f'warranty-{eq.id}',
                'type': 'warranty',
                'title': f'Warranty Expiring: {eq.equipment_name}',
                'description': f'Warranty expires on {eq.warranty_expiry.strftime("%b %d, %Y")}',
                'severity': 'medium',
            })

    # sorted() is stable, so alerts keep their input order within a severity
    return sorted(alerts, key=lambda a: SEVERITY_ORDER[a['severity']])
