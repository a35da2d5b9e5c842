from typing import Any, Dict, List, Optional
from fastapi import status, Request
from fastapi.responses import JSONResponse
from app.schemas.response_schemas import ApiResponse, ResponseStatus


def _request_id(request: Request) -> str:
    # Unset when a handler runs before RequestIDMiddleware
    return getattr(request.state, "request_id", None) or "unknown"


def _json(response: ApiResponse, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(by_alias=True, exclude_none=True),
    )


class ResponseBuilder:
    """Builds the ApiResponse envelope for routers and exception handlers"""

    @staticmethod
    def success(
        request: Request,
        data: Any = None,
        message: str = "Request successful",
        meta: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        response = ApiResponse(
            success=True,
            status=ResponseStatus.SUCCESS,
            message=message,
            data=data,
            meta=meta,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return _json(response, status_code)

    @staticmethod
    def error(
        request: Request,
        message: str = "An error occurred",
        errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        data: Any = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Error envelope; error_code is surfaced as meta.error_code"""
        response_meta = dict(meta or {})
        if error_code:
            response_meta["error_code"] = error_code

        response = ApiResponse(
            success=False,
            status=ResponseStatus.ERROR,
            message=message,
            data=data,
            meta=response_meta or None,
            errors=errors,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return _json(response, status_code)
