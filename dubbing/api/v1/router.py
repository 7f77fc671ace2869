from fastapi import APIRouter

from dubbing.api.v1.dubbing import router as dubbing_router

# Create the main API router
api_router = APIRouter()

# Include all the routers from different modules
api_router.include_router(dubbing_router)
