from collections import OrderedDict

from django.core.cache import cache
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import BelongsToCompany, RoleCapabilityPermission
from purchasing.kpis import compute_purchase_kpis
from purchasing.pipeline import FOLLOW_UP_ALERTS, order_follow_up, pipeline_stats


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, BelongsToCompany, RoleCapabilityPermission]
    permission_action_map = {"get": "purchasing.reports.view"}
    cache_timeout = 60

    def _parse_limit(self, request, default=10, minimum=1, maximum=1000):
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

        if not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
        return limit

    def _date_range(self, request, required=False):
        date_from = parse_date(request.query_params.get("date_from", ""))
        date_to = parse_date(request.query_params.get("date_to", ""))
        if not date_from and not date_to:
            if required:
                raise ValidationError({"date_range": "Both date_from and date_to are required."})
            return None, None

        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
        return date_from, date_to

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.user.company_id}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload


class PurchaseKpiReportView(BaseReportView):
    def get(self, request):
        date_from, date_to = self._date_range(request, required=True)
        limit = self._parse_limit(request, default=5, maximum=50)
        company_id = request.user.company_id

        def run():
            return compute_purchase_kpis(company_id, date_from, date_to, top_n=limit).as_dict()

        payload = self._cached(request, "purchase-kpis", run)
        response = Response(payload)
        response["Cache-Control"] = f"private, max-age={self.cache_timeout}"
        return response


class PurchasePipelineReportView(BaseReportView):
    def get(self, request):
        date_from, date_to = self._date_range(request)
        company_id = request.user.company_id

        def run():
            stats = pipeline_stats(company_id, date_from, date_to)
            return OrderedDict(
                range=OrderedDict(
                    date_from=date_from.isoformat() if date_from else None,
                    date_to=date_to.isoformat() if date_to else None,
                ),
                **{key: str(value) if not isinstance(value, int) else value for key, value in stats.items()},
            )

        return Response(self._cached(request, "purchase-pipeline", run))


class PurchaseFollowUpReportView(BaseReportView):
    def get(self, request):
        alert = request.query_params.get("alert")
        if alert is not None and alert not in FOLLOW_UP_ALERTS:
            raise ValidationError({"alert": f"Alert must be one of: {', '.join(FOLLOW_UP_ALERTS)}."})
        company_id = request.user.company_id

        def run():
            rows = order_follow_up(company_id)
            summary = OrderedDict((level, 0) for level in FOLLOW_UP_ALERTS)
            for row in rows:
                summary[row["alert"]] += 1
            if alert:
                rows = [row for row in rows if row["alert"] == alert]
            return OrderedDict(
                count=len(rows),
                summary=summary,
                results=[
                    {
                        **row,
                        "order_id": str(row["order_id"]),
                        "supplier_id": str(row["supplier_id"]),
                        "total": str(row["total"]),
                        "emission_date": row["emission_date"].isoformat(),
                        "expected_delivery_date": row["expected_delivery_date"].isoformat(),
                    }
                    for row in rows
                ],
            )

        return Response(self._cached(request, "purchase-follow-up", run))
