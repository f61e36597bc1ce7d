from fastapi import APIRouter

from app.api.routes import matching, reconciliations

api_router = APIRouter()

api_router.include_router(matching.router, prefix="/matching", tags=["Matching"])
api_router.include_router(reconciliations.router, prefix="/reconciliations", tags=["Reconciliations"])
