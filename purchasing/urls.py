from django.urls import path
from rest_framework.routers import DefaultRouter

from purchasing.reports import PurchaseFollowUpReportView, PurchaseKpiReportView, PurchasePipelineReportView
from purchasing.views import PurchaseInvoiceViewSet, PurchaseOrderViewSet, SupplierQuotationViewSet, SupplierViewSet

router = DefaultRouter()
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"quotations", SupplierQuotationViewSet, basename="quotation")
router.register(r"purchase-orders", PurchaseOrderViewSet, basename="purchase-order")
router.register(r"purchase-invoices", PurchaseInvoiceViewSet, basename="purchase-invoice")

urlpatterns = router.urls + [
    path("reports/purchases/kpis/", PurchaseKpiReportView.as_view(), name="purchase-kpis"),
    path("reports/purchases/pipeline/", PurchasePipelineReportView.as_view(), name="purchase-pipeline"),
    path("reports/purchases/follow-up/", PurchaseFollowUpReportView.as_view(), name="purchase-follow-up"),
]
