from bomledger.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("insufficient_inventory", "Insufficient inventory for 1 component(s)"),
    401: ("unauthorized", "Missing identity headers"),
    403: ("invalid_lot_override", "Manual lot override rejected"),
    404: ("not_found", "Component not found"),
    409: ("version_conflict", "Record was modified by another request; re-fetch and retry"),
    422: ("no_bom_effective", "No BOM version effective on 2024-03-01 for this SKU"),
    500: ("internal_error", "Internal server error"),
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    """OpenAPI ``responses`` entries sharing the error envelope, one example per status."""
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": code,
                            "message": message,
                            "request_id": "request-id",
                            "path": "/example",
                            "details": None,
                        }
                    }
                }
            },
        }
    return responses
