from fastapi import APIRouter

from app.api.routes import admin
from app.api.routes import feedback
from app.api.routes import nearby
from app.api.routes import sharing
from app.api.routes import vendors

api_router = APIRouter(prefix="/v1")

api_router.include_router(vendors.router)
api_router.include_router(sharing.router)
api_router.include_router(nearby.router)
api_router.include_router(admin.router)
api_router.include_router(feedback.router)
