"""Tools API — serves the static tool catalog to the front-end."""

from fastapi import APIRouter, Request

from app.api.chat import read_json_body
from app.data.tools import AVAILABLE_TOOLS

router = APIRouter(tags=["tools"])


@router.post("/tools")
async def list_tools(request: Request):
    """Return the tools the playground can offer to tool-capable models.

    The body is validated as JSON but otherwise unused.
    """
    await read_json_body(request, allow_empty=True)
    return {
        "tools": AVAILABLE_TOOLS,
        "status": "success",
    }
