from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination for purchasing list endpoints.

    `?page_size=` is honoured up to `max_page_size` so a single page of
    orders or invoices stays bounded.
    """

    page_size_query_param = "page_size"
    max_page_size = 100
