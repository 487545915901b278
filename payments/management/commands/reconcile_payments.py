from django.core.management.base import BaseCommand

from payments.tasks import reconcile_stale_transactions, replay_deferred_notifications


class Command(BaseCommand):
    help = "Replay deferred PayU notifications and reconcile stale transactions against the verify API."

    def add_arguments(self, parser):
        parser.add_argument("--max-age-mins", type=int, default=None)
        parser.add_argument("--limit", type=int, default=200)
        parser.add_argument("--dry-run", action="store_true")
        parser.add_argument("--sync", action="store_true")  # bypass Celery

    def handle(self, *args, **opts):
        task_kwargs = dict(
            max_age_mins=opts["max_age_mins"],
            limit=opts["limit"],
            dry_run=opts["dry_run"],
        )
        if opts["sync"]:
            self.stdout.write("Running synchronously")
            if not opts["dry_run"]:
                self.stdout.write(f"Replay: {replay_deferred_notifications(limit=opts['limit'])}")
            self.stdout.write(f"Stale: {reconcile_stale_transactions(**task_kwargs)}")
        else:
            if not opts["dry_run"]:
                replay_deferred_notifications.delay(limit=opts["limit"])
            reconcile_stale_transactions.delay(**task_kwargs)
            self.stdout.write(self.style.SUCCESS("Reconciliation tasks queued"))
        self.stdout.write(self.style.SUCCESS("Done"))
