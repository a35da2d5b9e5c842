from enum import Enum
from typing import Any, Dict, Optional, List

from pydantic import Field

from app.config.settings import settings
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from app.utils.datetime_utils import format_iso_utc, utc_now


class ResponseStatus(str, Enum):
    """Response status enumeration"""

    SUCCESS = "success"
    ERROR = "error"


class ApiResponse(BaseModel):
    """Envelope shared by every persons/health response"""

    success: bool = Field(..., description="Whether the request was successful")
    status: ResponseStatus = Field(..., description="Response status")
    message: str = Field(..., description="Human-readable message")
    data: Optional[Any] = Field(default=None, description="Response data")
    meta: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional metadata, e.g. error_code"
    )
    errors: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Field-level validation errors"
    )
    timestamp: str = Field(
        default_factory=lambda: format_iso_utc(utc_now()),
        description="Response timestamp, UTC",
    )
    request_id: str = Field(..., description="X-Request-ID of the request")
    path: Optional[str] = Field(default=None, description="Request path")
    version: str = Field(default=settings.VERSION, description="Service version")
