"""
Upload coordinator - pushes local submissions back to the remote backend
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from exam_tether.database import SessionLocal
from exam_tether.models import QuizSubmission, AssignmentSubmission
from exam_tether.services.remote_gateway import RemoteGateway, RemoteError, RemoteUnavailableError

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "No internet connection. Connect this laptop to the internet and try again."
ACCESS_DENIED_MESSAGE = "Access denied by the remote backend. Check its access policies or contact the administrator."


@dataclass
class UploadReport:
    """Per-category counts; skipped rows are also counted as failed"""
    quiz_uploaded: int = 0
    quiz_failed: int = 0
    quiz_skipped: int = 0
    quiz_total: int = 0
    assign_uploaded: int = 0
    assign_failed: int = 0
    assign_skipped: int = 0
    assign_total: int = 0

    @property
    def total_uploaded(self) -> int:
        return self.quiz_uploaded + self.assign_uploaded

    @property
    def total_failed(self) -> int:
        return self.quiz_failed + self.assign_failed

    @property
    def total_pending(self) -> int:
        return self.quiz_total + self.assign_total

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data.update(
            total_uploaded=self.total_uploaded,
            total_failed=self.total_failed,
            total_pending=self.total_pending,
        )
        return data


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def quiz_submission_payload(submission: QuizSubmission) -> Dict[str, Any]:
    """Map a local quiz submission onto the remote quiz_submissions row"""
    submitted_at = _timestamp(submission.submitted_at)
    return {
        "quiz_id": submission.quiz_id,
        "student_id": submission.student_id,
        "answers": submission.answers if isinstance(submission.answers, list) else [],
        "total_score": submission.total_score,
        "max_score": submission.max_score,
        "submitted_at": submitted_at,
        "is_graded": True,
        "started_at": submitted_at,  # start time is not tracked offline
    }


def assignment_submission_payload(submission: AssignmentSubmission) -> Dict[str, Any]:
    """Map a local assignment submission onto the remote student_submissions row"""
    return {
        "assignment_id": submission.assignment_id,
        "student_id": submission.student_id,
        "answers": [{"answer": submission.answer_text}],
        "submitted_at": _timestamp(submission.submitted_at),
    }


class UploadCoordinator:
    """
    Reconciles unuploaded submissions with the remote backend

    Each row is upserted on its natural key and flagged as uploaded on
    success, so a retry only touches what is still pending. One bad row
    never stops the batch.
    """

    # (model, remote table, conflict target, payload builder, report prefix)
    CATEGORIES = (
        (QuizSubmission, "quiz_submissions", "quiz_id,student_id", quiz_submission_payload, "quiz"),
        (AssignmentSubmission, "student_submissions", "assignment_id,student_id", assignment_submission_payload, "assign"),
    )

    def __init__(self, gateway: RemoteGateway, session_factory: sessionmaker = SessionLocal):
        self.gateway = gateway
        self.session_factory = session_factory

    async def run(self) -> UploadReport:
        """
        Upload every pending submission

        Raises:
            RemoteUnavailableError: connectivity probe failed; nothing was attempted
            RemoteError: the backend answered the probe with an error (e.g. access denied)
        """
        logger.info("Starting upload of results")

        try:
            online = await self.gateway.ping()
        except RemoteError as e:
            if e.is_permission_denied:
                raise RemoteError(ACCESS_DENIED_MESSAGE, code=e.code, status_code=e.status_code) from e
            raise

        if not online:
            raise RemoteUnavailableError(OFFLINE_MESSAGE)

        report = UploadReport()
        for model, table, on_conflict, build_payload, prefix in self.CATEGORIES:
            await self._upload_category(report, model, table, on_conflict, build_payload, prefix)

        logger.info(f"Upload finished: {report.total_uploaded}/{report.total_pending} uploaded")
        return report

    async def _upload_category(self, report, model, table, on_conflict, build_payload, prefix) -> None:
        with self.session_factory() as db:
            pending = db.query(model).filter(model.uploaded.is_(False)).order_by(model.id).all()

        setattr(report, f"{prefix}_total", len(pending))
        uploaded = failed = skipped = 0

        for submission in pending:
            try:
                await self.gateway.upsert(table, build_payload(submission), on_conflict=on_conflict)
            except RemoteError as e:
                failed += 1
                if e.is_foreign_key_violation:
                    skipped += 1
                    logger.warning(
                        f"Skipping {table} row {submission.id}: student {submission.student_id} "
                        f"or its {prefix} no longer exists remotely"
                    )
                else:
                    logger.error(f"Failed to upload {table} row {submission.id}: {e.message}")
                continue
            except Exception as e:
                failed += 1
                logger.error(f"Error uploading {table} row {submission.id}: {str(e)}", exc_info=True)
                continue

            try:
                with self.session_factory() as db:
                    db.query(model).filter(model.id == submission.id).update({model.uploaded: True})
                    db.commit()
            except SQLAlchemyError as e:
                # Row stays pending; the next pass upserts it again
                failed += 1
                logger.error(f"Uploaded {table} row {submission.id} but could not mark it locally: {str(e)}")
                continue
            uploaded += 1

        setattr(report, f"{prefix}_uploaded", uploaded)
        setattr(report, f"{prefix}_failed", failed)
        setattr(report, f"{prefix}_skipped", skipped)

        if pending:
            logger.info(f"{table}: {uploaded}/{len(pending)} uploaded")
        else:
            logger.info(f"{table}: nothing new to upload")


async def run_upload(
    session_factory: sessionmaker = SessionLocal,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UploadReport:
    """Open a gateway for one upload pass and run the coordinator"""
    async with RemoteGateway(transport=transport) as gateway:
        return await UploadCoordinator(gateway, session_factory).run()
