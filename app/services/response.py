def list_response(items: list, limit: int, offset: int) -> dict:
    return {"items": items, "count": len(items), "limit": limit, "offset": offset}


class ListResponseMixin:
    """Wraps a service's ``list`` in the paginated envelope used by the API."""

    def list_response(self, db, *, limit: int, offset: int, **filters) -> dict:
        items = self.list(db, limit=limit, offset=offset, **filters)
        return list_response(items, limit, offset)
