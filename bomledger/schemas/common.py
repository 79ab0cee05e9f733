from typing import Any

from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 42,
                "limit": 10,
                "offset": 0,
                "count": 10,
                "has_next": True,
            }
        }
    )


class ValidationIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    # Validation issues for 422s; domain errors carry their own structured payload.
    details: list[ValidationIssueOut] | dict[str, Any] | list[Any] | None = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "insufficient_inventory",
                    "message": "Insufficient inventory for 1 component(s)",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/transactions/build",
                    "details": [
                        {
                            "component_id": "cmp_1",
                            "component_name": "Bottle 250ml",
                            "required": "30",
                            "available": "12",
                            "shortage": "18",
                        }
                    ],
                }
            }
        }
    )
