from fastapi import Request, status

from app.utils.responses import ResponseBuilder


def handle_service_error(request: Request, error: Exception):
    """Centralized service error handler for all routers"""
    error_message = str(error)

    # Extract error code (format: "ERROR_CODE: message")
    if ":" in error_message:
        error_code = error_message.split(":", 1)[0]
    else:
        error_code = error_message

    error_status_mapping = {
        "PERSON_NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "INVALID_BIRTHDAY": status.HTTP_400_BAD_REQUEST,
        "PERSON_CREATION_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
        "PERSON_UPDATE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
        "PERSON_DELETION_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }

    status_code = error_status_mapping.get(
        error_code, status.HTTP_500_INTERNAL_SERVER_ERROR
    )

    error_messages = {
        "PERSON_NOT_FOUND": "Person not found",
        "INVALID_BIRTHDAY": "Birthday must be a valid YYYY-MM-DD date",
        "PERSON_CREATION_FAILED": "Failed to create person",
        "PERSON_UPDATE_FAILED": "Failed to update person",
        "PERSON_DELETION_FAILED": "Failed to delete person",
    }

    message = error_messages.get(error_code, "An unexpected error occurred")

    return ResponseBuilder.error(
        request=request,
        message=message,
        error_code=error_code if error_code in error_messages else "UNEXPECTED_ERROR",
        status_code=status_code,
    )
