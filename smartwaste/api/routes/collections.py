"""
API routes for collections
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Any, Dict, Optional
from datetime import datetime
from smartwaste.api.deps import emit, get_principal
from smartwaste.models.schemas import (
    Collection,
    CollectionCreate,
    CollectionRating,
    CollectionsResponse,
    CollectionStatusUpdate,
)
from smartwaste.services import collection_rules
from smartwaste.services.capabilities import Principal
from smartwaste.services.collection_workflow import CollectionWorkflow
from smartwaste.utils import pagination, serialize_doc, utcnow

router = APIRouter(prefix="/api/collections", tags=["collections"])


def present_collection(doc: Dict[str, Any], now: Optional[datetime] = None) -> Collection:
    cleaned = serialize_doc(doc)
    composition = doc.get("waste_composition")
    cleaned["total_weight"] = collection_rules.total_weight(composition)
    cleaned["total_volume"] = collection_rules.total_volume(composition)
    cleaned["is_overdue"] = collection_rules.is_overdue(doc, now or utcnow())
    cleaned["images"] = cleaned.get("images") or []
    return Collection(**cleaned)


@router.post("", response_model=Collection, status_code=201)
async def create_collection(
    data: CollectionCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    """
    Request a collection for a bin

    Bulk requests require an active premium subscription and carry a
    pending bulk fee.
    """
    composition = data.waste_composition.model_dump(exclude_none=True) if data.waste_composition else None
    outcome = await CollectionWorkflow().create_request(
        principal,
        data.bin_id,
        kind=data.kind,
        scheduled_at=data.scheduled_at,
        composition=composition,
        description=data.description,
        route_id=data.route_id,
    )
    emit(background_tasks, outcome.events)
    return present_collection(outcome.result)


@router.get("", response_model=CollectionsResponse)
async def list_collections(
    status: Optional[str] = None,
    kind: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_principal),
):
    collections, total = await CollectionWorkflow().list_collections(principal, status, kind, page, limit)
    now = utcnow()
    return CollectionsResponse(
        collections=[present_collection(doc, now) for doc in collections],
        pagination=pagination(total, page, limit),
    )


@router.get("/{collection_id}", response_model=Collection)
async def get_collection(collection_id: str, principal: Principal = Depends(get_principal)):
    return present_collection(await CollectionWorkflow().get_collection(principal, collection_id))


@router.put("/{collection_id}/status", response_model=Collection)
async def update_collection_status(
    collection_id: str,
    data: CollectionStatusUpdate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    """Advance a collection; completing it also empties the bin"""
    fields = data.model_dump(exclude={"status"}, exclude_none=True)
    outcome = await CollectionWorkflow().advance_status(principal, collection_id, data.status, fields)
    emit(background_tasks, outcome.events)
    return present_collection(outcome.result)


@router.put("/{collection_id}/rate", response_model=Collection)
async def rate_collection(
    collection_id: str,
    data: CollectionRating,
    principal: Principal = Depends(get_principal),
):
    collection = await CollectionWorkflow().rate(principal, collection_id, data.rating, data.feedback)
    return present_collection(collection)
