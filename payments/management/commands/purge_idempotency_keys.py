from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.enums import TERMINAL_STATES
from payments.models import IdempotencyRecord


class Command(BaseCommand):
    help = "Purge ledger entries of closed transactions older than the retention window."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Age in days to keep (default PAYMENTS_LEDGER_RETENTION_DAYS)",
        )

    def handle(self, *args, **options):
        days = int(options.get("days") or settings.PAYMENTS_LEDGER_RETENTION_DAYS)
        cutoff = timezone.now() - timedelta(days=days)
        # Open transactions keep their entries; a redelivery could still arrive.
        qs = IdempotencyRecord.objects.filter(
            applied_at__lt=cutoff, transaction__state__in=TERMINAL_STATES
        )
        count, _ = qs.delete()
        self.stdout.write(
            self.style.SUCCESS(f"Purged {count} ledger entries older than {days} days")
        )
