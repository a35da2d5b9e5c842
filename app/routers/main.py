from fastapi import APIRouter

from app.routers.persons import persons_router
from app.routers.shared import shared_router

main_router = APIRouter()

# Include domain-based routers
main_router.include_router(persons_router, prefix="/persons", tags=["Persons"])
main_router.include_router(shared_router, prefix="/shared", tags=["Shared Services"])
