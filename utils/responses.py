from flask import jsonify


def ok(data=None, status: int = 200):
    return jsonify(
        success=True,
        data=data,
        error=None,
        errors=[],
        errorCode=None,
    ), status


def fail(message: str, status: int, error_code: str, errors=None):
    return jsonify(
        success=False,
        data=None,
        error=message,
        errors=list(errors) if errors else [message],
        errorCode=error_code,
    ), status


def paginated(items, page, status: int = 200):
    """Envelope for a page of rows; `page` is a utils.pagination.Page."""
    return jsonify(
        success=True,
        data=items,
        error=None,
        errors=[],
        errorCode=None,
        pagination={
            "pageNumber": page.page_number,
            "pageSize": page.page_size,
            "totalCount": page.total_count,
            "totalPages": page.total_pages,
            "hasPreviousPage": page.has_previous_page,
            "hasNextPage": page.has_next_page,
        },
    ), status
