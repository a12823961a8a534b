import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'app.settings')

app = Celery('billing_backend')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs.
app.autodiscover_tasks()

app.conf.update(
    task_track_started=True,
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    timezone='UTC',
    enable_utc=True,

    # Task routing
    task_routes={
        'subscriptions.tasks.*': {'queue': 'subscriptions'},
    },

    # Periodic tasks (UTC)
    beat_schedule={
        'generate-monthly-invoices': {
            'task': 'subscriptions.tasks.generate_monthly_invoices',
            'schedule': crontab(minute=0, hour=2, day_of_month=1),
        },
        'daily-invoice-reconciliation': {
            'task': 'subscriptions.tasks.daily_invoice_reconciliation',
            'schedule': crontab(minute=0, hour=2),
        },
        'check-overdue-invoices': {
            'task': 'subscriptions.tasks.check_overdue_invoices',
            'schedule': crontab(minute=0, hour=0),
        },
        'send-payment-due-reminders': {
            'task': 'subscriptions.tasks.send_payment_due_reminders',
            'schedule': crontab(minute=0, hour=10),
        },
        'process-subscription-downgrades': {
            'task': 'subscriptions.tasks.process_subscription_downgrades',
            'schedule': crontab(minute=0, hour=1),
        },
        'retry-failed-webhooks': {
            'task': 'subscriptions.tasks.retry_failed_webhooks',
            'schedule': 300.0,  # Run every 5 minutes
        },
    },
)
