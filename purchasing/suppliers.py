import logging

from django.db import IntegrityError, transaction

from inventory.models import Product
from purchasing.errors import ConcurrencyConflict, InvalidInput, NotFound
from purchasing.models import Supplier, SupplierProduct
from purchasing.rules import get_rules
from purchasing.validation import ProcurementValidator, _as_uuid

logger = logging.getLogger(__name__)

SUPPLIER_FIELDS = ("name", "tax_id", "address", "phone", "email", "contact_name", "notes", "is_active")
CATALOG_FIELDS = ("supplier_code", "purchase_price", "lead_time_days")


def _clean(validator, company_id, data, exclude_id=None):
    unknown = set(data) - set(SUPPLIER_FIELDS)
    if unknown:
        raise InvalidInput("Unsupported fields: " + ", ".join(sorted(unknown)) + ".", field=sorted(unknown)[0])

    values = dict(data)
    if "name" in values:
        values["name"] = (values["name"] or "").strip()
        if not values["name"]:
            raise InvalidInput("Supplier name is required.", field="name")
    if "tax_id" in values:
        values["tax_id"] = validator.tax_id(values["tax_id"])
        validator.tax_id_unique(values["tax_id"], company_id, exclude_id=exclude_id)
    return values


def _save(supplier):
    try:
        with transaction.atomic():
            supplier.save()
    except IntegrityError:
        raise ConcurrencyConflict("A supplier with this RUC was created concurrently.", field="tax_id")
    return supplier


def create_supplier(company_id, data):
    with transaction.atomic():
        validator = ProcurementValidator(get_rules())
        company = validator.company(company_id)
        values = _clean(validator, company.id, data)
        for required in ("name", "tax_id"):
            if required not in values:
                raise InvalidInput(f"{required} is required.", field=required)
        supplier = _save(Supplier(company=company, **values))
        logger.info("supplier_created", extra={"company_id": company.id})
    return supplier


def update_supplier(supplier_id, company_id, data):
    with transaction.atomic():
        validator = ProcurementValidator(get_rules())
        company = validator.company(company_id)
        supplier = Supplier.objects.select_for_update().filter(id=supplier_id, company_id=company.id).first()
        if supplier is None:
            raise NotFound("Supplier not found.", field="supplier_id", supplier_id=supplier_id)
        for name, value in _clean(validator, company.id, data, exclude_id=supplier.id).items():
            setattr(supplier, name, value)
        _save(supplier)
    return supplier


def deactivate_supplier(supplier_id, company_id):
    return update_supplier(supplier_id, company_id, {"is_active": False})


def _supplier(supplier_id, company_id):
    supplier = Supplier.objects.filter(id=_as_uuid(supplier_id, "supplier_id"), company_id=company_id).first()
    if supplier is None:
        raise NotFound("Supplier not found.", field="supplier_id", supplier_id=supplier_id)
    return supplier


def _catalog_values(validator, data):
    unknown = set(data) - set(CATALOG_FIELDS)
    if unknown:
        raise InvalidInput("Unsupported fields: " + ", ".join(sorted(unknown)) + ".", field=sorted(unknown)[0])

    values = {"supplier_code": (data.get("supplier_code") or "").strip()}
    if len(values["supplier_code"]) > 64:
        raise InvalidInput("Supplier code cannot exceed 64 characters.", field="supplier_code")
    if data.get("purchase_price") not in (None, ""):
        values["purchase_price"] = validator.unit_price(data["purchase_price"], field="purchase_price")
    lead_time = data.get("lead_time_days")
    if lead_time is not None:
        if isinstance(lead_time, bool) or not isinstance(lead_time, int) or lead_time < 0:
            raise InvalidInput("Lead time must be a non-negative number of days.", field="lead_time_days")
        values["lead_time_days"] = lead_time
    return values


def supplier_catalog(supplier_id, company_id):
    supplier = _supplier(supplier_id, company_id)
    return SupplierProduct.objects.filter(supplier=supplier).select_related("product").order_by("product__sku")


def link_product(supplier_id, company_id, product_id, data=None):
    """Add a company product to a supplier's catalog."""
    with transaction.atomic():
        validator = ProcurementValidator(get_rules())
        company = validator.company(company_id)
        supplier = _supplier(supplier_id, company.id)
        product = Product.objects.filter(id=_as_uuid(product_id, "product_id"), company_id=company.id).first()
        if product is None:
            raise NotFound("Product not found.", field="product_id", product_id=product_id)
        values = _catalog_values(validator, dict(data or {}))
        if SupplierProduct.objects.filter(supplier=supplier, product=product).exists():
            raise InvalidInput(
                f"{product.sku} is already in the catalog of {supplier.name}.",
                field="product_id",
                product_id=product.id,
            )
        try:
            with transaction.atomic():
                link = SupplierProduct.objects.create(supplier=supplier, product=product, **values)
        except IntegrityError:
            raise ConcurrencyConflict("The product was linked to this supplier concurrently.", field="product_id")
        logger.info(
            "supplier_product_linked",
            extra={"company_id": company.id, "supplier_id": supplier.id, "product_id": product.id},
        )
    return link


def unlink_product(supplier_id, company_id, product_id):
    with transaction.atomic():
        supplier = _supplier(supplier_id, company_id)
        link = (
            SupplierProduct.objects.select_for_update()
            .filter(supplier=supplier, product_id=_as_uuid(product_id, "product_id"))
            .first()
        )
        if link is None:
            raise NotFound("Product is not in this supplier's catalog.", field="product_id", product_id=product_id)
        link.delete()
        logger.info(
            "supplier_product_unlinked",
            extra={"company_id": company_id, "supplier_id": supplier.id, "product_id": product_id},
        )
    return link
