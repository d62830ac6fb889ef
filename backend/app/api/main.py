from fastapi import APIRouter

from app.api.routes import chat, templates, utils

api_router = APIRouter()
api_router.include_router(utils.router, tags=["utils"])
api_router.include_router(templates.router, prefix="/templates", tags=["templates"])
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
