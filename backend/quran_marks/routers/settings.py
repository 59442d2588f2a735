from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..services.database_service import db_service

router = APIRouter(prefix="/settings", tags=["settings"])


class ThemeRequest(BaseModel):
    theme: Literal["light", "dark", "system"]


@router.get("/", response_model=dict[str, Any])
async def get_all_settings() -> dict[str, Any]:
    return db_service.settings.get_all()


@router.get("/theme", response_model=ThemeRequest)
async def get_theme() -> ThemeRequest:
    return ThemeRequest(theme=db_service.settings.get_theme())


@router.put("/theme", response_model=ThemeRequest)
async def set_theme(payload: ThemeRequest) -> ThemeRequest:
    if not db_service.settings.set("theme", payload.theme):
        raise HTTPException(status_code=500, detail="Failed to save theme")
    return payload
