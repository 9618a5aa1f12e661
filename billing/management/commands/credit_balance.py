"""
Management command to top up a user's token balance.
Usage: python manage.py credit_balance user@example.com 25.00 --reason admin_topup
"""
from decimal import Decimal, InvalidOperation

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from billing.quota import QuotaGate


class Command(BaseCommand):
    help = "Credit USD to a user's token balance"

    def add_arguments(self, parser):
        parser.add_argument('email')
        parser.add_argument('amount')
        parser.add_argument('--reason', default='admin_topup')

    def handle(self, *args, **options):
        try:
            amount = Decimal(options['amount'])
        except InvalidOperation:
            raise CommandError(f"Invalid amount: {options['amount']}")
        if amount <= 0:
            raise CommandError('Amount must be positive')

        User = get_user_model()
        try:
            user = User.objects.get(email=options['email'])
        except User.DoesNotExist:
            raise CommandError(f"No user with email {options['email']}")

        result = QuotaGate().credit(user.id, amount, options['reason'])
        self.stdout.write(self.style.SUCCESS(
            f"Credited ${amount} to {user.email}; balance is now ${result.new_balance}"
        ))
