"""REST endpoints for generating paths and tracking learners against them."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from .errors import (
    EmptyContentSet,
    InvalidLearnerId,
    InvalidRule,
    InvalidSchedule,
    MigrationConflict,
    PathEngineError,
    RecordNotFound,
    ScheduleNotFound,
    TemplateNotFound,
    TransactionFailure,
)
from .models import (
    GeneratedPath,
    GenerationRule,
    LearnerProgressRecord,
    PathTemplate,
    ProgressSnapshot,
    Schedule,
    ScheduleSlot,
)
from .service import LearningPathService

router = APIRouter(prefix="/api/paths", tags=["paths"])
developer_router = APIRouter(prefix="/api/developer", tags=["developer"])
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    ((ScheduleNotFound, RecordNotFound, TemplateNotFound), status.HTTP_404_NOT_FOUND),
    ((InvalidRule, InvalidSchedule, EmptyContentSet, InvalidLearnerId), status.HTTP_422_UNPROCESSABLE_ENTITY),
    ((MigrationConflict,), status.HTTP_409_CONFLICT),
    ((TransactionFailure,), status.HTTP_503_SERVICE_UNAVAILABLE),
)

_service: Optional[LearningPathService] = None


def get_service() -> LearningPathService:
    global _service
    if _service is None:
        _service = LearningPathService()
    return _service


def _http_error(exc: PathEngineError) -> HTTPException:
    for error_types, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_types):
            break
    else:
        logger.error("Unmapped engine error %s: %s", exc.code, exc.message)
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": exc.message, "details": exc.details},
    )


class GenerateRequest(BaseModel):
    rule: Dict[str, Any]
    preview: bool = True
    title: Optional[str] = Field(default=None, max_length=255)
    description: str = ""


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    rule: Dict[str, Any]
    is_active: bool = True


class TemplateGenerateRequest(BaseModel):
    preview: bool = True
    title: Optional[str] = Field(default=None, max_length=255)
    overrides: Dict[str, Any] = Field(default_factory=dict)


class SlotAssignment(BaseModel):
    item_id: str = Field(..., min_length=1)
    week_number: int = Field(..., ge=1)
    day_number: int = Field(..., ge=1)
    order_in_day: int = Field(..., ge=1)
    is_required: bool = True
    estimated_hours: Optional[float] = Field(default=None, ge=0.0)


class ReplaceSlotsRequest(BaseModel):
    slots: List[SlotAssignment]


class EnrollRequest(BaseModel):
    learner_id: str = Field(..., min_length=1)
    target_date: Optional[datetime] = None


class CompletionRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    completed_at: Optional[datetime] = None


class SwitchPathRequest(BaseModel):
    learner_id: str = Field(..., min_length=1)
    from_path_id: str = Field(..., min_length=1)
    to_path_id: str = Field(..., min_length=1)
    preserve_progress: bool = True


@router.post("/generate", response_model=GeneratedPath, status_code=status.HTTP_200_OK)
def generate_path(payload: GenerateRequest, service: LearningPathService = Depends(get_service)) -> GeneratedPath:
    try:
        rule = GenerationRule.from_payload(payload.rule)
        return service.generate_schedule(
            rule,
            preview=payload.preview,
            title=payload.title,
            description=payload.description,
        )
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.get("/templates", response_model=List[PathTemplate], status_code=status.HTTP_200_OK)
def list_templates(
    active_only: bool = False,
    service: LearningPathService = Depends(get_service),
) -> List[PathTemplate]:
    try:
        return service.list_templates(active_only=active_only)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post("/templates", response_model=PathTemplate, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: TemplateCreateRequest,
    service: LearningPathService = Depends(get_service),
) -> PathTemplate:
    try:
        template = PathTemplate(
            name=payload.name.strip(),
            description=payload.description,
            rule=GenerationRule.from_payload(payload.rule),
            is_active=payload.is_active,
        )
        return service.create_template(template)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post("/templates/{template_id}/generate", response_model=GeneratedPath, status_code=status.HTTP_200_OK)
def generate_from_template(
    template_id: str,
    payload: TemplateGenerateRequest,
    service: LearningPathService = Depends(get_service),
) -> GeneratedPath:
    try:
        return service.generate_from_template(
            template_id,
            preview=payload.preview,
            title=payload.title,
            overrides=payload.overrides,
        )
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post("/switch", response_model=LearnerProgressRecord, status_code=status.HTTP_200_OK)
def switch_path(payload: SwitchPathRequest, service: LearningPathService = Depends(get_service)) -> LearnerProgressRecord:
    try:
        return service.switch_path(
            payload.learner_id.strip(),
            payload.from_path_id,
            payload.to_path_id,
            payload.preserve_progress,
        )
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.get("/learners/{learner_id}/active", response_model=LearnerProgressRecord, status_code=status.HTTP_200_OK)
def get_active_record(learner_id: str, service: LearningPathService = Depends(get_service)) -> LearnerProgressRecord:
    try:
        return service.active_record(learner_id)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.get("/{path_id}", response_model=Schedule, status_code=status.HTTP_200_OK)
def get_path(path_id: str, service: LearningPathService = Depends(get_service)) -> Schedule:
    try:
        return service.get_schedule(path_id)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.put("/{path_id}/slots", response_model=Schedule, status_code=status.HTTP_200_OK)
def replace_path_slots(
    path_id: str,
    payload: ReplaceSlotsRequest,
    service: LearningPathService = Depends(get_service),
) -> Schedule:
    try:
        items = service.content_items(slot.item_id for slot in payload.slots)
        unknown = sorted({slot.item_id for slot in payload.slots if slot.item_id not in items})
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Content item(s) not found: {', '.join(unknown)}.",
            )
        slots = [
            ScheduleSlot(
                item=items[slot.item_id],
                week_number=slot.week_number,
                day_number=slot.day_number,
                order_in_day=slot.order_in_day,
                is_required=slot.is_required,
                estimated_hours=(
                    slot.estimated_hours
                    if slot.estimated_hours is not None
                    else items[slot.item_id].estimated_hours or 1.0
                ),
            )
            for slot in payload.slots
        ]
        return service.replace_schedule(path_id, slots)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post("/{path_id}/enroll", response_model=LearnerProgressRecord, status_code=status.HTTP_200_OK)
def enroll_learner(
    path_id: str,
    payload: EnrollRequest,
    service: LearningPathService = Depends(get_service),
) -> LearnerProgressRecord:
    try:
        return service.enroll(payload.learner_id.strip(), path_id, target_date=payload.target_date)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/{path_id}/learners/{learner_id}/completions",
    response_model=LearnerProgressRecord,
    status_code=status.HTTP_200_OK,
)
def record_completion(
    path_id: str,
    learner_id: str,
    payload: CompletionRequest,
    service: LearningPathService = Depends(get_service),
) -> LearnerProgressRecord:
    try:
        return service.record_completion(
            learner_id,
            path_id,
            payload.item_id.strip(),
            completed_at=payload.completed_at,
        )
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/{path_id}/learners/{learner_id}/progress",
    response_model=ProgressSnapshot,
    status_code=status.HTTP_200_OK,
)
def get_progress(
    path_id: str,
    learner_id: str,
    service: LearningPathService = Depends(get_service),
) -> ProgressSnapshot:
    try:
        return service.get_progress_snapshot(learner_id, path_id)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/{path_id}/learners/{learner_id}/pause",
    response_model=LearnerProgressRecord,
    status_code=status.HTTP_200_OK,
)
def pause_learner(
    path_id: str,
    learner_id: str,
    service: LearningPathService = Depends(get_service),
) -> LearnerProgressRecord:
    try:
        return service.pause(learner_id, path_id)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/{path_id}/learners/{learner_id}/resume",
    response_model=LearnerProgressRecord,
    status_code=status.HTTP_200_OK,
)
def resume_learner(
    path_id: str,
    learner_id: str,
    service: LearningPathService = Depends(get_service),
) -> LearnerProgressRecord:
    try:
        return service.resume(learner_id, path_id)
    except PathEngineError as exc:
        raise _http_error(exc) from exc


@developer_router.post("/schedule-cache/clear", status_code=status.HTTP_204_NO_CONTENT)
def clear_schedule_cache(service: LearningPathService = Depends(get_service)) -> Response:
    service.clear_cache()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["developer_router", "get_service", "router"]
