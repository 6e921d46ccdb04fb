"""Administrative endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_admin_principal
from api.maps import page_of_maps
from db.session import get_session
from models.map import MapList
from services import registry
from services.access import Principal

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/maps", response_model=MapList)
async def list_all_maps(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_admin_principal),
) -> MapList:
    """Every map, published or not."""
    maps, total = await registry.list_all_maps(db, principal, page, limit)
    return page_of_maps(maps, total, page, limit)
