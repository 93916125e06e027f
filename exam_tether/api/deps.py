"""
Route gates shared by the student-facing routers

- require_ready: state gate, 503 with the current state until the server is ready
- get_current_student: session gate, resolves the session header to a student id
"""
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from exam_tether.config import settings
from exam_tether.database import get_db
from exam_tether.services.exam_service import exam_service
from exam_tether.services.state_machine import ServerStateMachine


def get_server(request: Request) -> ServerStateMachine:
    return request.app.state.server


def require_ready(server: ServerStateMachine = Depends(get_server)) -> ServerStateMachine:
    if not server.is_ready:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "server_not_ready",
                "message": "The server is being prepared by the teacher. Wait a moment and try again.",
                "state": server.state.value,
            },
        )
    return server


def get_current_student(
    request: Request,
    _: ServerStateMachine = Depends(require_ready),
    db: Session = Depends(get_db),
) -> str:
    token = request.headers.get(settings.SESSION_HEADER)
    if not token:
        raise HTTPException(status_code=401, detail="Session token missing. Please log in again.")

    student_id = exam_service.resolve_session(db, token)
    if not student_id:
        raise HTTPException(status_code=401, detail="Invalid session. Please log in again.")

    request.state.student_id = student_id
    return student_id
