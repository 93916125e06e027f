"""
Server state and teacher endpoints - setup, upload, monitoring
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from exam_tether.api.deps import get_server
from exam_tether.database import get_db
from exam_tether.schemas.server import (
    ServerStateResponse,
    TeacherSetupRequest,
    TeacherSetupResponse,
    UploadResponse,
    TeacherStatus,
    TeacherResults,
)
from exam_tether.services.dashboard_service import dashboard_service
from exam_tether.services.remote_gateway import RemoteError, RemoteUnavailableError
from exam_tether.services.state_machine import (
    ServerStateMachine,
    DownloadInProgressError,
    UploadInProgressError,
)

router = APIRouter(prefix="/api", tags=["server"])
logger = logging.getLogger(__name__)


@router.get("/server/state", response_model=ServerStateResponse)
async def get_server_state(
    server: ServerStateMachine = Depends(get_server),
    db: Session = Depends(get_db),
):
    """Current lifecycle state, teacher identity and download progress"""
    return ServerStateResponse(**server.snapshot(db))


@router.post("/teacher/setup", response_model=TeacherSetupResponse, status_code=202)
async def setup_teacher(
    request: TeacherSetupRequest,
    server: ServerStateMachine = Depends(get_server),
):
    """
    Start downloading the teacher's data

    Returns at once; poll /api/server/state for the outcome.
    """
    nip = (request.nip or "").strip()
    if not nip:
        raise HTTPException(status_code=400, detail="NIP is required")

    try:
        server.start_download(nip)
    except DownloadInProgressError:
        raise HTTPException(status_code=409, detail="A download is already running. Wait until it finishes.")

    logger.info(f"Download started for NIP {nip}")
    return TeacherSetupResponse(message="Download started", state=server.state.value)


@router.post("/teacher/upload", response_model=UploadResponse)
async def upload_results(server: ServerStateMachine = Depends(get_server)):
    """
    Upload collected submissions to the remote backend

    - Aborts with 503 when the remote backend is unreachable
    - Aborts with 502 when it rejects the connectivity check (e.g. access denied)
    - Already uploaded rows are never sent again
    """
    try:
        report = await server.upload()
    except UploadInProgressError:
        raise HTTPException(status_code=409, detail="An upload is already running.")
    except RemoteUnavailableError as e:
        logger.error(f"Upload aborted: {e.message}")
        raise HTTPException(status_code=503, detail=e.message)
    except RemoteError as e:
        logger.error(f"Upload aborted: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)

    return UploadResponse(**report.to_dict())


@router.get("/teacher/status", response_model=TeacherStatus)
async def get_teacher_status(db: Session = Depends(get_db)):
    """Counts of cached data, submissions and pending uploads"""
    return TeacherStatus(**dashboard_service.get_status(db))


@router.get("/teacher/results", response_model=TeacherResults)
async def get_teacher_results(db: Session = Depends(get_db)):
    """All collected quiz and assignment submissions, newest first"""
    return TeacherResults(**dashboard_service.get_results(db))
