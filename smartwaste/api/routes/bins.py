"""
API routes for bins
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Any, Dict, Optional
from datetime import datetime
from smartwaste.api.deps import emit, get_principal
from smartwaste.config import settings
from smartwaste.models.schemas import (
    AssignCollector,
    Bin,
    BinCreate,
    BinListResponse,
    BinsResponse,
    BinUpdate,
    Coordinates,
    FillUpdate,
    MaintenanceCreate,
    NearbyBinsResponse,
)
from smartwaste.services import bin_state
from smartwaste.services.bins import BinService
from smartwaste.services.capabilities import Principal
from smartwaste.utils import pagination, serialize_doc, utcnow

router = APIRouter(prefix="/api/bins", tags=["bins"])


def present_bin(doc: Dict[str, Any], now: Optional[datetime] = None) -> Bin:
    """Bin document to response model, with derived fields filled in"""
    cleaned = serialize_doc(doc)
    stats = cleaned.get("stats") or {}
    cleaned["stats"] = {
        "total_collections": stats.get("total_collections") or 0,
        "average_fill_level": bin_state.average_fill_level(stats),
    }
    cleaned["needs_collection"] = bin_state.needs_collection(doc, now or utcnow())
    return Bin(**cleaned)


@router.post("", response_model=Bin, status_code=201)
async def create_bin(data: BinCreate, principal: Principal = Depends(get_principal)):
    """Register a new bin (admin)"""
    bin_doc = await BinService().create_bin(principal, data.model_dump())
    return present_bin(bin_doc)


@router.get("", response_model=BinsResponse)
async def list_bins(
    status: Optional[str] = None,
    category: Optional[str] = None,
    active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_principal),
):
    """
    List bins, newest first

    Collectors only see the bins assigned to them.
    """
    bins, total = await BinService().list_bins(principal, status, category, active, page, limit)
    now = utcnow()
    return BinsResponse(
        bins=[present_bin(doc, now) for doc in bins],
        pagination=pagination(total, page, limit),
    )


@router.get("/nearby", response_model=NearbyBinsResponse)
async def nearby_bins(
    latitude: float = Query(...),
    longitude: float = Query(...),
    radius: Optional[float] = Query(None, description="Search radius in km"),
    principal: Principal = Depends(get_principal),
):
    """Active bins around a point, nearest first"""
    results = await BinService().nearby(latitude, longitude, radius)
    now = utcnow()
    return NearbyBinsResponse(
        bins=[present_bin(doc, now) for doc in results],
        user_location=Coordinates(latitude=latitude, longitude=longitude),
        radius=radius if radius is not None else settings.nearby_default_radius_km,
    )


@router.get("/needing-collection", response_model=BinListResponse)
async def bins_needing_collection(principal: Principal = Depends(get_principal)):
    now = utcnow()
    bins = await BinService().bins_needing_collection(principal, now)
    return BinListResponse(bins=[present_bin(doc, now) for doc in bins], count=len(bins))


@router.get("/scan/{scan_token}", response_model=Bin)
async def scan_bin(scan_token: str, principal: Principal = Depends(get_principal)):
    """Resolve the token printed in a bin's QR code"""
    return present_bin(await BinService().get_bin_by_scan_token(scan_token))


@router.get("/{bin_id}", response_model=Bin)
async def get_bin(bin_id: str, principal: Principal = Depends(get_principal)):
    return present_bin(await BinService().get_bin(bin_id))


@router.put("/{bin_id}", response_model=Bin)
async def update_bin(bin_id: str, data: BinUpdate, principal: Principal = Depends(get_principal)):
    bin_doc = await BinService().update_bin(principal, bin_id, data.model_dump(exclude_none=True))
    return present_bin(bin_doc)


@router.delete("/{bin_id}")
async def delete_bin(bin_id: str, principal: Principal = Depends(get_principal)):
    await BinService().delete_bin(principal, bin_id)
    return {"message": "Bin deleted successfully"}


@router.put("/{bin_id}/fill", response_model=Bin)
async def update_fill_level(
    bin_id: str,
    data: FillUpdate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    """Record a disposal; fill_level is added to the current level"""
    outcome = await BinService().set_fill_level(principal, bin_id, data.fill_level)
    emit(background_tasks, outcome.events)
    return present_bin(outcome.result)


@router.put("/{bin_id}/assign-collector", response_model=Bin)
async def assign_collector(bin_id: str, data: AssignCollector, principal: Principal = Depends(get_principal)):
    bin_doc = await BinService().assign_collector(principal, bin_id, data.collector_id)
    return present_bin(bin_doc)


@router.post("/{bin_id}/maintenance", response_model=Bin)
async def record_maintenance(
    bin_id: str,
    data: MaintenanceCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    outcome = await BinService().record_maintenance(
        principal, bin_id, data.type, data.description, data.set_maintenance
    )
    emit(background_tasks, outcome.events)
    return present_bin(outcome.result)


@router.delete("/{bin_id}/maintenance", response_model=Bin)
async def clear_maintenance(
    bin_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    """Return a bin to service; status is re-derived from its fill level"""
    outcome = await BinService().clear_maintenance(principal, bin_id)
    emit(background_tasks, outcome.events)
    return present_bin(outcome.result)
