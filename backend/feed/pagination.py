"""
Last-seen-id cursor pagination.

WHY NOT OFFSET:
- Offset pagination: SELECT ... LIMIT 10 OFFSET 1000 scans 1010 rows
- Cursor pagination: WHERE (created_at, id) < (anchor) is an index seek

The client sends the id of the last item it received. Rows are ordered
newest first by (created_at, id); the id breaks ties between rows
created in the same instant. There is no total count: a full page means
"there may be more".
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from django.conf import settings
from django.db.models import Q, QuerySet
from rest_framework import serializers
from rest_framework.pagination import BasePagination
from rest_framework.response import Response


def default_page_size() -> int:
    return getattr(settings, 'FEED_PAGE_SIZE', 10)


def max_page_size() -> int:
    return getattr(settings, 'FEED_MAX_PAGE_SIZE', 50)


def positive_int_param(name: str, raw) -> int:
    """Parse a query parameter that must be a positive integer (400 otherwise)."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise serializers.ValidationError({name: 'Must be a positive integer.'})
    if value < 1:
        raise serializers.ValidationError({name: 'Must be a positive integer.'})
    return value


@dataclass
class Page:
    items: list = field(default_factory=list)
    next_cursor: Optional[int] = None
    has_more: bool = False


def paginate_after(queryset: QuerySet, cursor: Optional[int] = None,
                   page_size: Optional[int] = None) -> Page:
    """
    Return up to ``page_size`` rows that come after row ``cursor``.

    An unknown cursor (row deleted meanwhile, or bogus id) yields an
    empty page rather than restarting from the top.
    """
    page_size = page_size or default_page_size()
    page_size = max(1, min(page_size, max_page_size()))

    queryset = queryset.order_by('-created_at', '-id')

    if cursor is not None:
        anchor = (
            queryset.model._default_manager
            .filter(pk=cursor)
            .values_list('created_at', flat=True)
            .first()
        )
        if anchor is None:
            return Page()
        queryset = queryset.filter(
            Q(created_at__lt=anchor) | Q(created_at=anchor, id__lt=cursor)
        )

    items = list(queryset[:page_size])
    has_more = len(items) == page_size
    return Page(
        items=items,
        next_cursor=items[-1].pk if has_more else None,
        has_more=has_more,
    )


class LastSeenIdPagination(BasePagination):
    """
    DRF adapter for paginate_after().

    Query params: ``cursor`` (id of the last item seen), ``limit``.
    Response: {"results": [...], "next_cursor": id | null, "has_more": bool}
    """
    cursor_query_param = 'cursor'
    page_size_query_param = 'limit'

    page: Page

    def get_cursor(self, request) -> Optional[int]:
        raw = request.query_params.get(self.cursor_query_param)
        if raw in (None, ''):
            return None
        return positive_int_param(self.cursor_query_param, raw)

    def get_page_size(self, request) -> int:
        raw = request.query_params.get(self.page_size_query_param)
        if raw in (None, ''):
            return default_page_size()
        return min(positive_int_param(self.page_size_query_param, raw), max_page_size())

    def paginate_queryset(self, queryset, request, view=None):
        self.page = paginate_after(
            queryset,
            cursor=self.get_cursor(request),
            page_size=self.get_page_size(request),
        )
        return self.page.items

    def get_paginated_response(self, data: Any) -> Response:
        return Response({
            'results': data,
            'next_cursor': self.page.next_cursor,
            'has_more': self.page.has_more,
        })

    def get_paginated_response_schema(self, schema):
        return {
            'type': 'object',
            'properties': {
                'results': schema,
                'next_cursor': {'type': 'integer', 'nullable': True},
                'has_more': {'type': 'boolean'},
            },
        }
