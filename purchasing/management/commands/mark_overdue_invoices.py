import uuid

from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from core.models import Company
from purchasing.lifecycle import mark_overdue_invoices


class Command(BaseCommand):
    help = "Mark pending purchase invoices past their due date as overdue."

    def add_arguments(self, parser):
        parser.add_argument("--company-id", dest="company_id", help="Optional company UUID.")
        parser.add_argument("--date", dest="date", help="Reference day (YYYY-MM-DD); defaults to each company's today.")

    def handle(self, *args, **options):
        today = None
        if options["date"]:
            today = parse_date(options["date"])
            if today is None:
                raise CommandError("--date must be a date in YYYY-MM-DD format.")

        companies = Company.objects.filter(status=Company.Status.ACTIVE).order_by("code")
        if options["company_id"]:
            try:
                company_id = uuid.UUID(options["company_id"])
            except ValueError:
                raise CommandError(f"{options['company_id']} is not a valid company id.")
            companies = companies.filter(id=company_id)
            if not companies.exists():
                raise CommandError(f"Active company {options['company_id']} not found.")

        total = 0
        for company in companies:
            updated = mark_overdue_invoices(company.id, today=today)
            total += updated
            self.stdout.write(f"{company.code}: {updated} invoice(s) marked overdue")
        self.stdout.write(self.style.SUCCESS(f"Marked {total} overdue invoice(s)."))
