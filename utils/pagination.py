import math
from dataclasses import dataclass

from utils.errors import ValidationFailed

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PaginationParams:
    page_number: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size

    @classmethod
    def from_args(cls, args) -> "PaginationParams":
        errors = []
        page_number = _int_arg(args, "pageNumber", 1, errors)
        page_size = _int_arg(args, "pageSize", DEFAULT_PAGE_SIZE, errors)
        if page_number is not None and page_number < 1:
            errors.append("pageNumber must be 1 or greater")
        if page_size is not None and not 1 <= page_size <= MAX_PAGE_SIZE:
            errors.append(f"pageSize must be between 1 and {MAX_PAGE_SIZE}")
        if errors:
            raise ValidationFailed(errors)
        return cls(page_number=page_number, page_size=page_size)


@dataclass(frozen=True)
class Page:
    items: list
    page_number: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages


def paginate(query, params: PaginationParams) -> Page:
    # count on the unordered query; ORDER BY is irrelevant to the total
    total = query.order_by(None).count()
    rows = query.offset(params.offset).limit(params.page_size).all()
    return Page(items=rows, page_number=params.page_number, page_size=params.page_size, total_count=total)


def _int_arg(args, name, default, errors):
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer")
        return None
