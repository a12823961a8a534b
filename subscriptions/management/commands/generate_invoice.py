"""
Management command to generate the postpaid invoice of one business for one month
"""
from django.core.management.base import BaseCommand, CommandError

from subscriptions.exceptions import SubscriptionError
from subscriptions.invoice_generation import InvoiceGenerationService


class Command(BaseCommand):
    help = 'Generate (or re-run a failed generation of) the invoice for a business and month'

    def add_arguments(self, parser):
        parser.add_argument('business_id', help='UUID of the business')
        parser.add_argument('year', type=int)
        parser.add_argument('month', type=int)

    def handle(self, *args, **options):
        try:
            invoice = InvoiceGenerationService.manually_generate_invoice(
                options['business_id'], options['year'], options['month']
            )
        except SubscriptionError as e:
            raise CommandError(str(e))

        if invoice is None:
            raise CommandError('Invoice generation failed, see the invoice generation log for details')

        self.stdout.write(self.style.SUCCESS(
            f'Invoice {invoice.invoice_number}: {invoice.currency} {invoice.total_amount} due {invoice.due_date:%Y-%m-%d}'
        ))
