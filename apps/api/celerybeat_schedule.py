"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Nightly reconciliation - keeps the forward window materialized for
    # every active rule. Runs just before the sweep.
    'reconcile-recurring-tasks': {
        'task': 'tasks.reconcile_recurring_tasks',
        'schedule': crontab(hour=0, minute=0),
    },
    # Nightly missed-task sweep - pending instances from previous days
    # become "missed" so completion rates stay meaningful.
    'mark-missed-tasks': {
        'task': 'tasks.mark_missed_tasks',
        'schedule': crontab(hour=0, minute=5),
    },
}
