# tile_overlay/delivery/api/templates.py
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from typing import Any, Dict, List
import asyncio
import logging
import traceback

from tile_overlay.config.settings import settings
from tile_overlay.delivery.schemas.body import (
    CoordsBody,
    CreatedTemplate,
    CreateTemplateBody,
    EnabledBody,
    ImportResponse,
    MessageResponse,
    RenameBody,
    TemplateSummary,
    ToggleBody,
    UserBody,
)
from tile_overlay.domain.errors import DecodeError, TemplateNotFoundError, TemplateValidationError
from tile_overlay.domain.template_manager import TemplateManager
from tile_overlay.infrastructure.io.image_loader import load_image_bytes

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def get_manager(request: Request) -> TemplateManager:
    manager = getattr(request.app.state, "template_manager", None)
    if manager is None:
        logger.error("Template manager not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready. Please try again in a moment.",
        )
    return manager


def _to_http(e: Exception, action: str) -> HTTPException:
    if isinstance(e, TemplateValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, TemplateNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, DecodeError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"=== {action} ERROR: {e} ===\n{traceback.format_exc()}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal error while processing templates.",
    )


@router.get("/templates", response_model=List[TemplateSummary])
async def list_templates(manager: TemplateManager = Depends(get_manager)):
    return manager.get_all_templates()


@router.post("/templates", response_model=CreatedTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(body: CreateTemplateBody, manager: TemplateManager = Depends(get_manager)):
    try:
        image_bytes = await load_image_bytes(body.image)
        template = await manager.create_template(image_bytes, body.name, body.coords)
    except Exception as e:
        raise _to_http(e, "CREATE")
    return CreatedTemplate(
        key=template.key,
        name=template.display_name,
        coords=template.coords,
        pixelCount=template.pixel_count,
        fragments=sorted(template.chunked),
        status=manager.last_status,
    )


@router.delete("/templates", response_model=MessageResponse)
async def delete_template(key: str = Query(...), manager: TemplateManager = Depends(get_manager)):
    try:
        await manager.delete_template(key)
    except Exception as e:
        raise _to_http(e, "DELETE")
    return MessageResponse(message=f"Template {key} deleted")


@router.patch("/templates/enabled", response_model=MessageResponse)
async def toggle_template(body: ToggleBody, manager: TemplateManager = Depends(get_manager)):
    try:
        await manager.toggle_template(body.key, body.enabled)
    except Exception as e:
        raise _to_http(e, "TOGGLE")
    return MessageResponse(message=f"Template {body.key} {'enabled' if body.enabled else 'disabled'}")


@router.put("/templates/enabled", response_model=MessageResponse)
async def set_all_templates_enabled(body: EnabledBody, manager: TemplateManager = Depends(get_manager)):
    try:
        await manager.set_all_templates_enabled(body.enabled)
    except Exception as e:
        raise _to_http(e, "TOGGLE ALL")
    return MessageResponse(message=manager.last_status)


@router.patch("/templates/name", response_model=MessageResponse)
async def rename_template(body: RenameBody, manager: TemplateManager = Depends(get_manager)):
    try:
        message = await manager.update_template_name(body.key, body.name)
    except Exception as e:
        raise _to_http(e, "RENAME")
    return MessageResponse(message=message)


@router.patch("/templates/coords", response_model=MessageResponse)
async def update_coordinates(body: CoordsBody, manager: TemplateManager = Depends(get_manager)):
    try:
        message = await manager.update_template_coordinates(body.key, body.coords)
    except Exception as e:
        raise _to_http(e, "COORDS")
    return MessageResponse(message=message)


@router.post("/templates/import", response_model=ImportResponse)
async def import_templates(document: Dict[str, Any] = Body(...), manager: TemplateManager = Depends(get_manager)):
    try:
        result = await manager.import_json(document)
    except Exception as e:
        raise _to_http(e, "IMPORT")
    if not result.accepted:
        raise HTTPException(status_code=422, detail=result.message)
    return ImportResponse(
        accepted=result.accepted,
        imported=result.imported,
        skipped=result.skipped,
        failed_fragments=result.failed_fragments,
        message=result.message,
    )


@router.get("/templates/export")
async def export_templates(manager: TemplateManager = Depends(get_manager)):
    return manager.export_json()


@router.put("/templates/drawing", response_model=MessageResponse)
async def set_drawing(body: EnabledBody, manager: TemplateManager = Depends(get_manager)):
    manager.set_templates_should_be_drawn(body.enabled)
    return MessageResponse(message=f"Template drawing {'enabled' if body.enabled else 'disabled'}")


@router.put("/user", response_model=MessageResponse)
async def set_user(body: UserBody, manager: TemplateManager = Depends(get_manager)):
    try:
        author_id = manager.set_user_id(body.user_id)
    except Exception as e:
        raise _to_http(e, "USER")
    return MessageResponse(message=f"Author id is now {author_id}")


@router.get("/status", response_model=MessageResponse)
async def last_status(manager: TemplateManager = Depends(get_manager)):
    return MessageResponse(message=manager.last_status)


@router.post("/tiles/{tile_x}/{tile_y}")
async def draw_tile(tile_x: int, tile_y: int, request: Request, manager: TemplateManager = Depends(get_manager)):
    tile_bytes = await request.body()
    try:
        output = await asyncio.wait_for(
            manager.draw_template_on_tile(tile_bytes, (tile_x, tile_y)),
            timeout=settings.ENDPOINT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(f"=== TILE TIMEOUT for {tile_x},{tile_y} after {settings.ENDPOINT_TIMEOUT_SECONDS}s ===")
        raise HTTPException(status_code=504, detail="Tile compositing timed out")
    except Exception as e:
        raise _to_http(e, f"TILE {tile_x},{tile_y}")

    media_type = request.headers.get("content-type", "")
    if not media_type.startswith("image/"):
        media_type = "image/png"
    return Response(content=output, media_type=media_type)
