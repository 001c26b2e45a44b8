from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from bulkops.api.deps import Engine
from bulkops.domain.errors import (
    HandlerNotFoundError,
    InvalidOperationStateError,
    OperationNotFoundError,
    ValidationError,
)
from bulkops.domain.states import OperationStatus

router = APIRouter()

ItemIdField = Union[int, str]

class OperationCreate(BaseModel):
    operation_type: str
    operation_name: str
    items: list[ItemIdField]
    options: dict[str, Any] = {}
    owner: Optional[str] = None

class SubmitResponse(BaseModel):
    operation_id: UUID
    status: OperationStatus
    message: str = "Operation started successfully."

class ProgressResponse(BaseModel):
    processed_items: int
    total_items: int
    progress_percentage: float
    status: OperationStatus
    model_config = ConfigDict(from_attributes=True)

class ItemFailureDTO(BaseModel):
    item_id: Optional[ItemIdField] = None
    error_message: str
    model_config = ConfigDict(from_attributes=True)

class OperationSummary(BaseModel):
    id: UUID
    operation_type: str
    operation_name: str
    status: OperationStatus
    total_items: int
    processed_items: int
    progress_percentage: float
    error_count: int = 0
    can_rollback: bool
    owner: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

class OperationResponse(OperationSummary):
    items: list[ItemIdField]
    options: dict[str, Any]
    errors: list[ItemFailureDTO]
    rollback_errors: list[ItemFailureDTO]
    rollback_data: dict[str, Any]

class OperationTypeDTO(BaseModel):
    operation_type: str
    operation_name: str
    required_options: list[str]

def _summary(record) -> OperationSummary:
    summary = OperationSummary.model_validate(record)
    summary.error_count = len(record.errors)
    return summary

def _detail(record) -> OperationResponse:
    detail = OperationResponse.model_validate(record)
    detail.error_count = len(record.errors)
    return detail

@router.post("", response_model=SubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit(payload: OperationCreate, engine: Engine):
    try:
        operation_id = await engine.submit(
            operation_type=payload.operation_type,
            operation_name=payload.operation_name,
            items=payload.items,
            options=payload.options,
            owner=payload.owner,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SubmitResponse(operation_id=operation_id, status=OperationStatus.PENDING)

@router.get("", response_model=list[OperationSummary])
async def list_operations(
    engine: Engine,
    status_filter: Optional[OperationStatus] = Query(None, alias="status"),
    owner: Optional[str] = None,
    operation_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    records = await engine.list_recent(
        status=status_filter,
        owner=owner,
        operation_type=operation_type,
        limit=limit,
        offset=offset,
    )
    return [_summary(r) for r in records]

@router.get("/types", response_model=list[OperationTypeDTO])
async def list_operation_types(engine: Engine, operation_type: Optional[str] = None):
    return [
        OperationTypeDTO(
            operation_type=spec.operation_type,
            operation_name=spec.operation_name,
            required_options=list(spec.required_options),
        )
        for spec in engine.registry.operations(operation_type)
    ]

@router.get("/{operation_id}/progress", response_model=ProgressResponse)
async def get_progress(operation_id: UUID, engine: Engine):
    try:
        progress = await engine.get_progress(operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")
    return ProgressResponse.model_validate(progress)

@router.get("/{operation_id}", response_model=OperationResponse)
async def get_operation(operation_id: UUID, engine: Engine):
    try:
        record = await engine.get(operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")
    return _detail(record)

@router.post("/{operation_id}/cancel", response_model=OperationResponse)
async def cancel(operation_id: UUID, engine: Engine):
    try:
        record = await engine.cancel(operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")
    except InvalidOperationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _detail(record)

@router.post("/{operation_id}/rollback", response_model=OperationResponse)
async def rollback(operation_id: UUID, engine: Engine):
    try:
        record = await engine.rollback(operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")
    except (InvalidOperationStateError, HandlerNotFoundError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _detail(record)
