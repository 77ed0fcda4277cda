"""
HTTP transport for the defense administration engine.

Routes translate request models into engine calls and map error kinds to
status codes. ``create_app`` builds an app around a given service; the
module-level ``app`` is what ``uvicorn`` serves.
"""
from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .errors import ErrorKind
from .filters import CommitteeFilter
from .models import MemberRole
from .schemas import (
    AssignTopicsRequest,
    AutoAssignRequest,
    ChangeAssignmentRequest,
    CommitteeCreateRequest,
    CommitteeMembersRequest,
    CommitteeUpdateRequest,
    ErrorBody,
)
from .service import DefenseAdminService, OperationResult

logger = logging.getLogger("uvicorn.error")

API_VERSION = "0.1.0"

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.VALIDATION_FAILURE.value: 400,
    ErrorKind.CONFLICT.value: 409,
    ErrorKind.AUTHORIZATION_DENIED.value: 403,
    ErrorKind.CANCELLED.value: 400,
    ErrorKind.STORE_FAILURE.value: 503,
}

EXPORT_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


def _parse_origins(value: str | None) -> list[str]:
    if not value:
        return []
    return [entry.strip() for entry in value.split(",") if entry.strip()]


def _resolve_allowed_origins() -> list[str]:
    explicit = _parse_origins(os.getenv("ALLOWED_ORIGINS"))
    if explicit:
        return explicit
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


def get_service(request: Request) -> DefenseAdminService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        service = DefenseAdminService.from_settings()
        request.app.state.service = service
        logger.info("Defense admin service started with %s store", service.settings.store_backend)
    return service


def require_admin(
    service: DefenseAdminService = Depends(get_service),
    x_user_role: Optional[str] = Header(None),
) -> str:
    """Role gate for mutating routes; open unless ``enforce_roles`` is set."""
    actor = x_user_role or "system"
    if not service.settings.enforce_roles:
        return actor
    if x_user_role not in service.settings.admin_roles:
        error = ErrorBody(
            kind=ErrorKind.AUTHORIZATION_DENIED.value,
            code="NOT_AUTHORIZED",
            message="Administrative role required",
        )
        raise HTTPException(status_code=403, detail=error.model_dump())
    return actor


def _unwrap(result: OperationResult) -> Any:
    if result.success:
        return result.data
    error = ErrorBody(**result.error)
    raise HTTPException(status_code=STATUS_BY_KIND.get(error.kind, 400), detail=error.model_dump())


router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "healthy", "service": "defense-admin-backend", "version": API_VERSION}


# -- committees ----------------------------------------------------------------


@router.get("/api/committees")
def list_committees(
    keyword: Optional[str] = None,
    defense_date: Optional[date] = None,
    tag: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    service: DefenseAdminService = Depends(get_service),
):
    committee_filter = CommitteeFilter(
        keyword=keyword,
        defense_date=defense_date,
        tags=frozenset([tag]) if tag else None,
    )
    return _unwrap(service.list_committees(committee_filter, page, page_size))


@router.get("/api/committees/init")
def committee_create_init(service: DefenseAdminService = Depends(get_service)):
    return _unwrap(service.get_committee_create_init())


@router.post("/api/committees", status_code=201)
def create_committee(
    req: CommitteeCreateRequest,
    service: DefenseAdminService = Depends(get_service),
    _actor: str = Depends(require_admin),
):
    return _unwrap(service.create_committee(req.to_draft()))


@router.get("/api/committees/{committee_code}")
def committee_detail(committee_code: str, service: DefenseAdminService = Depends(get_service)):
    return _unwrap(service.get_committee_detail(committee_code))


@router.put("/api/committees/{committee_code}")
def update_committee(
    committee_code: str,
    req: CommitteeUpdateRequest,
    service: DefenseAdminService = Depends(get_service),
    _actor: str = Depends(require_admin),
):
    return _unwrap(service.update_committee(committee_code, req.to_changes()))


@router.put("/api/committees/{committee_code}/members")
def save_committee_members(
    committee_code: str,
    req: CommitteeMembersRequest,
    service: DefenseAdminService = Depends(get_service),
    _actor: str = Depends(require_admin),
):
    members = [m.to_input() for m in req.members]
    return _unwrap(service.save_committee_members(committee_code, members))


@router.delete("/api/committees/{committee_code}")
def delete_committee(
    committee_code: str,
    force: bool = False,
    service: DefenseAdminService = Depends(get_service),
    actor: str = Depends(require_admin),
):
    return _unwrap(service.delete_committee(committee_code, force, deleted_by=actor))


# -- availability --------------------------------------------------------------


@router.get("/api/availability/lecturers")
def available_lecturers(
    tag: Optional[str] = None,
    on_date: Optional[date] = None,
    role: Optional[MemberRole] = None,
    require_chair: bool = False,
    excluding_committee: Optional[str] = None,
    service: DefenseAdminService = Depends(get_service),
):
    return _unwrap(
        service.get_available_lecturers(tag, on_date, role, require_chair, excluding_committee)
    )


@router.get("/api/availability/topics")
def available_topics(
    tag: Optional[str] = None,
    department: Optional[str] = None,
    excluding_committee: Optional[str] = None,
    service: DefenseAdminService = Depends(get_service),
):
    return _unwrap(service.get_available_topics(tag, department, excluding_committee))


# -- assignments ---------------------------------------------------------------


@router.post("/api/assignments", status_code=201)
def assign_topics(
    req: AssignTopicsRequest,
    service: DefenseAdminService = Depends(get_service),
    actor: str = Depends(require_admin),
):
    requests = [item.to_request() for item in req.items]
    return _unwrap(service.assign_topics(req.committee_code, requests, assigned_by=actor))


@router.post("/api/assignments/auto")
def auto_assign(
    req: AutoAssignRequest,
    service: DefenseAdminService = Depends(get_service),
    actor: str = Depends(require_admin),
):
    return _unwrap(
        service.auto_assign_topics(
            req.tag_priority_order,
            req.per_session_cap,
            override_committees=req.override_committees,
            topic_codes=req.topic_codes,
            assigned_by=actor,
        )
    )


@router.put("/api/assignments/{topic_code}")
def change_assignment(
    topic_code: str,
    req: ChangeAssignmentRequest,
    service: DefenseAdminService = Depends(get_service),
    actor: str = Depends(require_admin),
):
    return _unwrap(
        service.change_assignment(
            topic_code,
            req.new_committee_code,
            req.new_scheduled_at,
            req.new_ends_at,
            changed_by=actor,
            override_tag_match=req.override_tag_match,
            override_reason=req.override_reason,
        )
    )


@router.delete("/api/assignments/{topic_code}")
def remove_assignment(
    topic_code: str,
    service: DefenseAdminService = Depends(get_service),
    actor: str = Depends(require_admin),
):
    removed = _unwrap(service.remove_assignment(topic_code, removed_by=actor))
    return {"removed": removed is not None, "assignment": removed}


# -- read models ---------------------------------------------------------------


@router.get("/api/lecturers/{lecturer_code}/committees")
def lecturer_committees(lecturer_code: str, service: DefenseAdminService = Depends(get_service)):
    return _unwrap(service.get_lecturer_committees(lecturer_code))


@router.get("/api/students/{student_code}/defense")
def student_defense(student_code: str, service: DefenseAdminService = Depends(get_service)):
    return _unwrap(service.get_student_defense_info(student_code))


@router.get("/api/topics/{topic_code}/history")
def topic_history(topic_code: str, service: DefenseAdminService = Depends(get_service)):
    return _unwrap(service.get_topic_history(topic_code))


@router.get("/api/tags")
def list_tags(service: DefenseAdminService = Depends(get_service)):
    return _unwrap(service.get_tags())


@router.get("/api/schedule/export")
def export_schedule(
    fmt: str = Query("csv", alias="format"),
    committee_code: Optional[str] = None,
    service: DefenseAdminService = Depends(get_service),
):
    content = _unwrap(service.export_schedule(fmt, committee_code))
    return Response(
        content=content,
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="defense-schedule.{fmt}"'},
    )


def create_app(service: Optional[DefenseAdminService] = None) -> FastAPI:
    application = FastAPI(title="Defense Admin API", version=API_VERSION)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_resolve_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.state.service = service
    application.include_router(router)
    return application


app = create_app()
