from fastapi import APIRouter

from .v1 import credits, workflows

api_router = APIRouter(prefix="/api", tags=["pipedream"])

api_router.include_router(workflows.router, prefix="/v1", tags=["workflows"])
api_router.include_router(credits.router, prefix="/v1", tags=["credits"])


@api_router.get("/")
def read_root():
    return {"message": "PipeDream workflow engine"}
