from pydantic import BaseModel


class PaginationMeta(BaseModel):
    total_items: int
    total_pages: int
    page: int
    limit: int


def pagination_meta(*, total_items: int, page: int, limit: int) -> PaginationMeta:
    total_pages = max(1, (total_items + limit - 1) // limit) if limit else 1
    return PaginationMeta(total_items=total_items, total_pages=total_pages, page=page, limit=limit)
