"""
Management command to run the scheduled billing jobs synchronously (without Celery beat)
"""
from django.core.management.base import BaseCommand

from subscriptions.tasks import BILLING_JOBS


class Command(BaseCommand):
    help = 'Run billing jobs once, in-process'

    def add_arguments(self, parser):
        parser.add_argument(
            '--job',
            action='append',
            choices=sorted(BILLING_JOBS),
            help='Job to run (repeatable). Runs every job except "monthly" when omitted.',
        )

    def handle(self, *args, **options):
        jobs = options['job'] or [name for name in BILLING_JOBS if name != 'monthly']

        for name in jobs:
            self.stdout.write(f'Running {name}...')
            result = BILLING_JOBS[name]()
            self.stdout.write(self.style.SUCCESS(f'✓ {name}: {result}'))
