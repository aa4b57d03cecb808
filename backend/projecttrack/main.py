from __future__ import annotations

import datetime as dt
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import models
from .clock import Clock, SystemClock
from .config import settings
from .database import SessionLocal, engine, get_db
from .deps import Actor, current_actor, get_clock, get_sweeper, require_reviewer
from .logging_setup import configure_logging
from .manual_time import (
    approve_request,
    create_request,
    delete_request,
    list_pending_requests,
    list_requests,
    reject_request,
    update_request,
)
from .middleware import RequestLoggingMiddleware
from .schemas import (
    ManualTimeRequestCreate,
    ManualTimeRequestResponse,
    ManualTimeRequestUpdate,
    ProjectCreateRequest,
    ProjectResponse,
    SweepResponse,
    WorkDeviceRequest,
    WorkSessionResponse,
    WorkStartRequest,
    WorkStopRequest,
)
from .services import (
    create_project,
    get_current_session,
    list_projects,
    list_sessions,
    pause_session,
    record_liveness,
    resolve_target,
    resume_session,
    start_session,
    stop_session,
)
from .sweeper import IdleSweeper, SweepConfig

models.Base.metadata.create_all(bind=engine)

clock = SystemClock()
sweeper = IdleSweeper(SessionLocal, SweepConfig.from_settings(settings), clock)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    if settings.sweep_enabled:
        app.state.sweeper.start()
    try:
        yield
    finally:
        app.state.sweeper.stop(timeout=5)


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.clock = clock
app.state.sweeper = sweeper
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _session_out(session: models.WorkSession, clock: Clock) -> WorkSessionResponse:
    return WorkSessionResponse.from_session(session, clock.now())


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/work/start", response_model=WorkSessionResponse, status_code=status.HTTP_201_CREATED)
def work_start(
    payload: WorkStartRequest,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> WorkSessionResponse:
    target = resolve_target(db, payload.project_id, payload.custom_task)
    session = start_session(
        db,
        actor.user_id,
        target,
        notes=payload.notes,
        device_id=payload.device_id,
        device_info=payload.device_info,
        clock=clock,
    )
    return _session_out(session, clock)


@app.post("/work/pause", response_model=WorkSessionResponse)
def work_pause(
    payload: WorkDeviceRequest | None = None,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> WorkSessionResponse:
    payload = payload or WorkDeviceRequest()
    session = pause_session(db, actor.user_id, payload.device_id, payload.device_info, clock=clock)
    return _session_out(session, clock)


@app.post("/work/resume", response_model=WorkSessionResponse)
def work_resume(
    payload: WorkDeviceRequest | None = None,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> WorkSessionResponse:
    payload = payload or WorkDeviceRequest()
    session = resume_session(db, actor.user_id, payload.device_id, payload.device_info, clock=clock)
    return _session_out(session, clock)


@app.post("/work/stop", response_model=WorkSessionResponse)
def work_stop(
    payload: WorkStopRequest | None = None,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> WorkSessionResponse:
    payload = payload or WorkStopRequest()
    session = stop_session(
        db,
        actor.user_id,
        payload.notes,
        payload.device_id,
        payload.device_info,
        clock=clock,
    )
    return _session_out(session, clock)


@app.post("/work/heartbeat", response_model=WorkSessionResponse)
def work_heartbeat(
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> WorkSessionResponse:
    session = record_liveness(db, actor.user_id, clock=clock)
    return _session_out(session, clock)


@app.get("/work/current", response_model=WorkSessionResponse)
def work_current(
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> WorkSessionResponse:
    return _session_out(get_current_session(db, actor.user_id), clock)


@app.get("/work/my", response_model=list[WorkSessionResponse])
def work_my(
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> list[WorkSessionResponse]:
    now = clock.now()
    sessions = list_sessions(db, actor.user_id, from_date, to_date)
    return [WorkSessionResponse.from_session(session, now) for session in sessions]


@app.get("/projects", response_model=list[ProjectResponse])
def get_projects(
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
) -> list[ProjectResponse]:
    return list_projects(db)


@app.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def post_project(
    payload: ProjectCreateRequest,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    return create_project(db, payload.name, payload.company, payload.category)


@app.post(
    "/manual-requests",
    response_model=ManualTimeRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_manual_request(
    payload: ManualTimeRequestCreate,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> ManualTimeRequestResponse:
    target = resolve_target(db, payload.project_id, payload.custom_task)
    return create_request(
        db,
        actor.user_id,
        target,
        payload.requested_minutes,
        payload.text,
        task_type=payload.task_type,
        day=payload.day,
        clock=clock,
    )


@app.get("/manual-requests", response_model=list[ManualTimeRequestResponse])
def get_manual_requests(
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
) -> list[ManualTimeRequestResponse]:
    return list_requests(db, actor.user_id)


@app.get("/manual-requests/pending", response_model=list[ManualTimeRequestResponse])
def get_pending_manual_requests(
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> list[ManualTimeRequestResponse]:
    return list_pending_requests(db)


@app.put("/manual-requests/{request_id}", response_model=ManualTimeRequestResponse)
def put_manual_request(
    request_id: int,
    payload: ManualTimeRequestUpdate,
    actor: Actor = Depends(current_actor),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> ManualTimeRequestResponse:
    changes = payload.model_dump(exclude_unset=True)
    return update_request(db, actor.user_id, request_id, changes, clock=clock)


@app.delete("/manual-requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_manual_request(
    request_id: int,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
) -> Response:
    delete_request(db, actor.user_id, request_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/manual-requests/{request_id}/approve", status_code=status.HTTP_204_NO_CONTENT)
def approve_manual_request(
    request_id: int,
    actor: Actor = Depends(require_reviewer),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> Response:
    approve_request(db, request_id, actor.user_id, clock=clock)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/manual-requests/{request_id}/reject", status_code=status.HTTP_204_NO_CONTENT)
def reject_manual_request(
    request_id: int,
    actor: Actor = Depends(require_reviewer),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_db),
) -> Response:
    reject_request(db, request_id, actor.user_id, clock=clock)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/admin/sweep", response_model=SweepResponse)
def run_sweep(
    actor: Actor = Depends(require_reviewer),
    idle_sweeper: IdleSweeper = Depends(get_sweeper),
) -> SweepResponse:
    return idle_sweeper.sweep()
