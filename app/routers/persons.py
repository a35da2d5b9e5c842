from typing import Annotated

from fastapi import APIRouter, Depends, Request, status, Path

from app.services.person_service import PersonService, get_person_service
from app.schemas.person_schemas import (
    CreatePersonRequest,
    UpdatePersonRequest,
    PersonResponse,
)
from app.utils.responses import ResponseBuilder
from app.utils.errors import BusinessLogicError
from app.utils.error_handlers import handle_service_error

persons_router = APIRouter()


@persons_router.post(
    "/",
    response_model=PersonResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a person",
    description="Register a person; their next 9 AM local birthday is computed from the location's timezone",
)
async def create_person(
    request: Request,
    person_data: CreatePersonRequest,
    person_service: PersonService = Depends(get_person_service),
):
    try:
        person_response = await person_service.create_person(person_data)

        return ResponseBuilder.success(
            request=request,
            data=person_response.model_dump(by_alias=True),
            message="Person created successfully",
            status_code=status.HTTP_201_CREATED,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to create person", error_code="PERSON_CREATION_FAILED"
        )


@persons_router.get(
    "/{person_id}",
    response_model=PersonResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a person",
)
async def get_person(
    request: Request,
    person_id: Annotated[str, Path(description="Person ID")],
    person_service: PersonService = Depends(get_person_service),
):
    person = await person_service.get_person_by_id(person_id)
    if not person:
        return handle_service_error(request, ValueError("PERSON_NOT_FOUND"))

    return ResponseBuilder.success(
        request=request,
        data=PersonService.to_response(person).model_dump(by_alias=True),
        message="Person retrieved successfully",
    )


@persons_router.put(
    "/{person_id}",
    response_model=PersonResponse,
    status_code=status.HTTP_200_OK,
    summary="Update a person",
    description="Partially update a person. Changing the birthday or location recomputes the next occurrence.",
)
async def update_person(
    request: Request,
    person_data: UpdatePersonRequest,
    person_id: Annotated[str, Path(description="Person ID to update")],
    person_service: PersonService = Depends(get_person_service),
):
    try:
        person_response = await person_service.update_person(person_id, person_data)

        return ResponseBuilder.success(
            request=request,
            data=person_response.model_dump(by_alias=True),
            message="Person updated successfully",
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to update person", error_code="PERSON_UPDATE_FAILED"
        )


@persons_router.delete(
    "/{person_id}",
    response_model=PersonResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete a person",
)
async def delete_person(
    request: Request,
    person_id: Annotated[str, Path(description="Person ID to delete")],
    person_service: PersonService = Depends(get_person_service),
):
    try:
        person_response = await person_service.delete_person(person_id)

        return ResponseBuilder.success(
            request=request,
            data=person_response.model_dump(by_alias=True),
            message="Person deleted successfully",
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to delete person", error_code="PERSON_DELETION_FAILED"
        )
