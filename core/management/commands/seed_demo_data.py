from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.models import Company
from inventory.models import Category, Product
from purchasing import lifecycle, pipeline
from purchasing.models import PurchaseOrder, Supplier, SupplierQuotation


class Command(BaseCommand):
    help = "Seed a demo company with users, suppliers, products and purchase documents for local development."

    def _user(self, User, username, role, company, password, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@example.com", "role": role, "company": company, "is_active": True, **extra},
        )
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()

        company, _ = Company.objects.get_or_create(
            code="DEMO",
            defaults={"name": "Demo Importaciones S.A.C.", "tax_id": "20100000001", "timezone": "America/Lima"},
        )

        admin_user = self._user(User, "admin", User.Role.ADMIN, company, "admin1234", is_staff=True, is_superuser=True)
        self._user(User, "buyer", User.Role.BUYER, company, "buyer1234")
        self._user(User, "clerk", User.Role.CLERK, company, "clerk1234")

        supplies, _ = Category.objects.get_or_create(company=company, name="Office Supplies")
        hardware, _ = Category.objects.get_or_create(company=company, name="Hardware")

        supplier, _ = Supplier.objects.get_or_create(
            company=company,
            tax_id="20512345678",
            defaults={"name": "Distribuidora Andina S.A.C.", "email": "ventas@andina.example.com"},
        )
        Supplier.objects.get_or_create(
            company=company,
            tax_id="10456789012",
            defaults={"name": "Ferreteria Lima E.I.R.L."},
        )

        paper, _ = Product.objects.get_or_create(
            company=company,
            sku="PAP-A4-500",
            defaults={"category": supplies, "name": "A4 paper ream", "cost": Decimal("18.50")},
        )
        drill, _ = Product.objects.get_or_create(
            company=company,
            sku="DRL-18V",
            defaults={"category": hardware, "name": "Cordless drill 18V", "cost": Decimal("249.00")},
        )
        Product.objects.get_or_create(
            company=company,
            sku="SRV-INSTALL",
            defaults={"name": "Installation service", "is_service": True},
        )

        if not PurchaseOrder.objects.filter(company=company).exists():
            order = lifecycle.create_order(
                company.id,
                supplier.id,
                None,
                [
                    {"product_id": paper.id, "quantity": 3, "unit_price": "50.00", "discount": "5"},
                    {"product_id": drill.id, "quantity": 1, "unit_price": "200.00"},
                ],
                user_id=admin_user.id,
            )
            lifecycle.confirm_order(order.id, company.id)
            lifecycle.receive_order(order.id, company.id)
            self.stdout.write(self.style.SUCCESS(f"Created and received purchase order {order.order_number}."))

        if not SupplierQuotation.objects.filter(company=company).exists():
            quotation = pipeline.create_quotation(
                company.id,
                supplier.id,
                [{"product_id": paper.id, "quantity": 10, "unit_price": "48.00"}],
                reference="COT-0001",
            )
            self.stdout.write(self.style.SUCCESS(f"Created pending quotation {quotation.reference}."))

        self.stdout.write(self.style.SUCCESS(f"Demo data ready for company {company.code}."))
