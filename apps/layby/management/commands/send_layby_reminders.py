from django.core.management.base import BaseCommand
from django.db.models import Q

from apps.layby.services import send_payment_reminders
from apps.stores.models import Store


class Command(BaseCommand):
    help = "Queue payment reminders for open laybys in stores with automatic reminders enabled."

    def handle(self, *args, **options):
        sent = 0
        skipped = 0
        # Stores without a settings row run on the defaults, which enable automatic reminders.
        stores = Store.objects.filter(is_active=True).filter(
            Q(layby_settings__automatic_reminders_enabled=True) | Q(layby_settings__isnull=True)
        )
        for store in stores:
            for row in send_payment_reminders(store=store, user=None, automatic=True):
                if row["status"] == "sent":
                    sent += 1
                else:
                    skipped += 1

        self.stdout.write(self.style.SUCCESS(f"Reminders queued: {sent}, skipped: {skipped}"))
