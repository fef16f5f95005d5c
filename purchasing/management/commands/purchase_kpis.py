import json
import uuid

from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from core.models import Company
from purchasing.kpis import compute_purchase_kpis


class Command(BaseCommand):
    help = "Print the purchase KPI snapshot of a company for a date range as JSON."

    def add_arguments(self, parser):
        parser.add_argument("--company-id", dest="company_id", required=True, help="Company UUID.")
        parser.add_argument("--date-from", dest="date_from", required=True, help="First day (YYYY-MM-DD).")
        parser.add_argument("--date-to", dest="date_to", required=True, help="Last day (YYYY-MM-DD).")
        parser.add_argument("--limit", type=int, default=5, help="Top suppliers and categories to list (default: 5).")

    def handle(self, *args, **options):
        date_from = parse_date(options["date_from"] or "")
        date_to = parse_date(options["date_to"] or "")
        if not date_from or not date_to:
            raise CommandError("--date-from and --date-to must be dates in YYYY-MM-DD format.")
        if date_from > date_to:
            raise CommandError("--date-from must be before or equal to --date-to.")
        if options["limit"] < 1:
            raise CommandError("--limit must be at least 1.")

        try:
            company_id = uuid.UUID(options["company_id"])
        except ValueError:
            raise CommandError(f"{options['company_id']} is not a valid company id.")
        company = Company.objects.filter(id=company_id).first()
        if company is None:
            raise CommandError(f"Company {options['company_id']} not found.")

        snapshot = compute_purchase_kpis(company.id, date_from, date_to, top_n=options["limit"])
        self.stdout.write(json.dumps(snapshot.as_dict(), indent=2, sort_keys=True))
