# inspection_api/responses.py
#
# One response shape for every endpoint:
#   {success, data?, message?, errors?, pagination?}
# Services hand back ServiceResult; routers turn it into a JSONResponse.
from __future__ import annotations
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    FAILURE = "FAILURE"
    UNAVAILABLE = "UNAVAILABLE"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FAILURE: 500,
    ErrorKind.UNAVAILABLE: 503,
}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNext: bool
    hasPrev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            totalPages=total_pages,
            hasNext=page < total_pages,
            hasPrev=page > 1,
        )


@dataclass
class ServiceResult:
    success: bool
    data: Any = None
    message: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    kind: Optional[ErrorKind] = None
    pagination: Optional[Pagination] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None,
           pagination: Optional[Pagination] = None) -> "ServiceResult":
        return cls(success=True, data=data, message=message, pagination=pagination)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, errors: Optional[List[str]] = None,
             data: Any = None) -> "ServiceResult":
        return cls(success=False, kind=kind, message=message, errors=list(errors or []), data=data)

    @classmethod
    def invalid(cls, errors: List[str]) -> "ServiceResult":
        return cls.fail(ErrorKind.VALIDATION, f"Validation failed: {', '.join(errors)}", errors)

    @classmethod
    def not_found(cls, message: str) -> "ServiceResult":
        return cls.fail(ErrorKind.NOT_FOUND, message)

    def status_code(self, success_status: int = 200) -> int:
        if self.success:
            return success_status
        return STATUS_BY_KIND.get(self.kind or ErrorKind.FAILURE, 500)

    def to_envelope(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.success or self.data is not None:
            body["data"] = self.data
        if self.message:
            body["message"] = self.message
        if self.errors:
            body["errors"] = list(self.errors)
        if self.pagination is not None:
            body["pagination"] = self.pagination.model_dump()
        return body


def respond(result: ServiceResult, success_status: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=result.status_code(success_status),
        content=jsonable_encoder(result.to_envelope()),
    )


def error_body(message: str, code: Optional[str] = None, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if code:
        body["code"] = code
    if errors:
        body["errors"] = errors
    return body
