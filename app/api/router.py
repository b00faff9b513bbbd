from fastapi import APIRouter

from app.api.chat import preflight
from app.api.chat import router as chat_router
from app.api.tools import router as tools_router

CONTENT_PATHS = (
    "/chat/{provider}",
    "/stream/{provider}",
    "/perplexity",
    "/proxy",
    "/streaming",
    "/tools",
)

api_router = APIRouter(prefix="/api")
api_router.include_router(chat_router)
api_router.include_router(tools_router)

# Registered after the POST routes so other methods get a 405 advertising "Allow: POST"
for _path in CONTENT_PATHS:
    api_router.add_api_route(_path, preflight, methods=["OPTIONS"], include_in_schema=False)
