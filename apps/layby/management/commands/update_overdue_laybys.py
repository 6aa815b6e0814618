from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.layby.services import update_overdue_laybys
from apps.stores.models import Store


class Command(BaseCommand):
    help = "Mark active laybys past their due date as overdue, along with their unpaid installments."

    def add_arguments(self, parser):
        parser.add_argument("--as-of", dest="as_of", help="Reference date (YYYY-MM-DD). Defaults to today.")
        parser.add_argument("--store", dest="store_code", help="Limit the sweep to one store code.")

    def handle(self, *args, **options):
        as_of = None
        if options.get("as_of"):
            try:
                as_of = date.fromisoformat(options["as_of"])
            except ValueError as exc:
                raise CommandError(f"Invalid --as-of date: {options['as_of']}") from exc

        store = None
        if options.get("store_code"):
            store = Store.objects.filter(code=options["store_code"].strip().upper()).first()
            if store is None:
                raise CommandError(f"Unknown store code: {options['store_code']}")

        result = update_overdue_laybys(as_of=as_of, store=store)
        self.stdout.write(
            self.style.SUCCESS(
                f"Overdue laybys: {result['orders_updated']}, overdue installments: {result['schedules_updated']}"
            )
        )
