"""
Download coordinator - dependency-ordered pull of one teacher's data

Stages (each depends on the previous stage's result set):
1. Resolve teacher by NIP                        (fatal on failure)
2. Teaching assignments of the teacher           (empty -> done, still a success)
3. Students of the assignments' classes          (replace-all)
4. Active quizzes of the assignments             (replace-all, questions first)
5. Questions of those quizzes + their images     (images fetched sequentially)
6. Assignments (non-quiz coursework)             (replace-all)

Only stage 1 can fail the whole pull. Every later stage logs its error, remote
or local, and leaves its table as it was, so a flaky uplink degrades the
session instead of bricking it.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from exam_tether.config import settings
from exam_tether.database import SessionLocal
from exam_tether.models import Student, Quiz, Question, Assignment
from exam_tether.models.meta import (
    set_meta,
    META_TEACHER_ID,
    META_TEACHER_NAME,
    META_TEACHER_NIP,
    META_DOWNLOAD_TIME,
    META_DOWNLOAD_STATUS,
    DOWNLOAD_STATUS_IN_PROGRESS,
    DOWNLOAD_STATUS_COMPLETE,
)
from exam_tether.models.quiz import QUESTION_TYPE_MULTIPLE_CHOICE, DEFAULT_QUESTION_POINTS
from exam_tether.services.image_fetcher import ImageFetcher
from exam_tether.services.remote_gateway import RemoteGateway, RemoteError, eq, in_

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class DownloadError(Exception):
    """Fatal download failure; the message is shown to the teacher as-is"""


@dataclass
class DownloadReport:
    """Summary of one pull"""
    teacher_name: str
    teaching_assignments: int = 0
    students: Optional[int] = None
    quizzes: Optional[int] = None
    questions: Optional[int] = None
    assignments: Optional[int] = None
    images_downloaded: int = 0
    images_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _embedded(row: Dict[str, Any], relation: str, field: str) -> Optional[Any]:
    """Null-safe access to an embedded lookup (object or single-item list)"""
    value = row.get(relation)
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        return value.get(field)
    return None


class DownloadCoordinator:
    """Pulls a teacher's scope of data into the local store"""

    def __init__(
        self,
        gateway: RemoteGateway,
        image_fetcher: ImageFetcher,
        session_factory: sessionmaker = SessionLocal,
        progress: Optional[ProgressCallback] = None,
    ):
        self.gateway = gateway
        self.image_fetcher = image_fetcher
        self.session_factory = session_factory
        self._progress = progress or (lambda message: None)

    def report_progress(self, message: str) -> None:
        logger.info(message)
        self._progress(message)

    async def run(self, nip: str) -> DownloadReport:
        """
        Execute the full pull

        Raises:
            DownloadError: teacher not found or access denied
        """
        self.report_progress("Looking up teacher...")
        teacher = await self._resolve_teacher(nip)

        teacher_name = _embedded(teacher, "user", "full_name") or "Teacher"
        report = DownloadReport(teacher_name=teacher_name)
        self.report_progress(f"Teacher found: {teacher_name}. Fetching teaching assignments...")

        with self.session_factory() as db:
            set_meta(db, META_TEACHER_ID, str(teacher["id"]))
            set_meta(db, META_TEACHER_NAME, teacher_name)
            set_meta(db, META_TEACHER_NIP, nip)
            set_meta(db, META_DOWNLOAD_TIME, datetime.now(timezone.utc).isoformat())
            set_meta(db, META_DOWNLOAD_STATUS, DOWNLOAD_STATUS_IN_PROGRESS)
            db.commit()

        teaching_assignments = await self._fetch_teaching_assignments(teacher["id"])
        report.teaching_assignments = len(teaching_assignments)

        if not teaching_assignments:
            logger.warning("0 teaching assignments found")
            self._mark_complete()
            self.report_progress("Finished (no teaching assignments found)")
            return report

        ta_ids = [ta["id"] for ta in teaching_assignments]
        class_ids = list(dict.fromkeys(ta["class_id"] for ta in teaching_assignments if ta.get("class_id")))
        labels = {
            ta["id"]: {
                "subject": _embedded(ta, "subject", "name") or "-",
                "class_name": _embedded(ta, "class", "name") or "-",
            }
            for ta in teaching_assignments
        }

        if class_ids:
            self.report_progress("Downloading students...")
            report.students = await self._download_students(class_ids)

        self.report_progress("Downloading active quizzes...")
        quiz_ids = await self._download_quizzes(ta_ids, labels)
        report.quizzes = len(quiz_ids) if quiz_ids is not None else None

        if quiz_ids:
            self.report_progress("Downloading quiz questions...")
            await self._download_questions(quiz_ids, report)

        self.report_progress("Downloading assignments...")
        report.assignments = await self._download_assignments(ta_ids, labels)

        self._mark_complete()
        self.report_progress("Download complete!")
        logger.info(f"Download summary: {report.to_dict()}")

        return report

    async def _resolve_teacher(self, nip: str) -> Dict[str, Any]:
        try:
            teacher = await self.gateway.select_one(
                "teachers",
                "id, nip, user:users(full_name)",
                {"nip": eq(nip)},
            )
        except RemoteError as e:
            if e.is_permission_denied:
                raise DownloadError(
                    "Access denied by the remote backend. Check its access policies or contact the administrator."
                ) from e
            raise DownloadError(f"Failed to look up teacher: {e.message}") from e

        if not teacher:
            raise DownloadError(f'NIP "{nip}" is not registered. Make sure the NIP is correct.')

        return teacher

    async def _fetch_teaching_assignments(self, teacher_id: Any) -> List[Dict[str, Any]]:
        try:
            return await self.gateway.select(
                "teaching_assignments",
                "id, class_id, subject:subjects(name), class:classes(id, name)",
                {"teacher_id": eq(teacher_id)},
            )
        except RemoteError as e:
            logger.error(f"Failed to fetch teaching assignments: {e.message}")
            return []

    async def _download_students(self, class_ids: List[Any]) -> Optional[int]:
        try:
            rows = await self.gateway.select(
                "students",
                "id, nis, user:users(full_name), class:classes(name)",
                {"class_id": in_(class_ids)},
            )
        except RemoteError as e:
            logger.error(f"Failed to download students: {e.message}")
            return None

        students = []
        seen_nis = set()
        for row in rows:
            # Missing NIS is stored as NULL; the unique index allows many
            nis = row.get("nis") or None
            if nis is not None:
                if nis in seen_nis:
                    logger.warning(f"Skipping student {row['id']}: NIS {nis} already used by another student")
                    continue
                seen_nis.add(nis)

            students.append(
                Student(
                    id=str(row["id"]),
                    nis=nis,
                    nama=_embedded(row, "user", "full_name") or "Unnamed",
                    kelas=_embedded(row, "class", "name") or "No class",
                )
            )

        if not self._replace_all("students", (Student,), students):
            return None

        if not students:
            logger.warning("0 students found in this teacher's classes")
        else:
            logger.info(f"{len(students)} students downloaded")
        return len(students)

    async def _download_quizzes(self, ta_ids: List[Any], labels: Dict[Any, Dict[str, str]]) -> Optional[List[str]]:
        try:
            rows = await self.gateway.select(
                "quizzes",
                "id, title, description, duration_minutes, is_randomized, teaching_assignment_id, is_active",
                {"teaching_assignment_id": in_(ta_ids), "is_active": eq(True)},
            )
        except RemoteError as e:
            logger.error(f"Failed to download quizzes: {e.message}")
            return None

        quizzes = []
        for row in rows:
            label = labels.get(row.get("teaching_assignment_id"), {})
            quizzes.append(
                Quiz(
                    id=str(row["id"]),
                    title=row.get("title") or "",
                    description=row.get("description") or "",
                    subject=label.get("subject", "-"),
                    class_name=label.get("class_name", "-"),
                    duration_minutes=row.get("duration_minutes") or 30,
                    is_randomized=bool(row.get("is_randomized")),
                )
            )

        # children before parents
        if not self._replace_all("quizzes", (Question, Quiz), quizzes):
            return None

        if not quizzes:
            logger.warning("0 active quizzes found; make sure quizzes are activated on the dashboard")
        else:
            logger.info(f"{len(quizzes)} quizzes downloaded")
        return [quiz.id for quiz in quizzes]

    async def _download_questions(self, quiz_ids: List[str], report: DownloadReport) -> None:
        try:
            rows = await self.gateway.select(
                "quiz_questions",
                "id, quiz_id, question_text, question_type, options, correct_answer, "
                "points, order_index, image_url, passage_text",
                {"quiz_id": in_(quiz_ids)},
            )
        except RemoteError as e:
            logger.error(f"Failed to download questions: {e.message}")
            return

        with_images = [row for row in rows if row.get("image_url")]
        if with_images:
            self.report_progress(f"Downloading {len(with_images)} question images...")

        questions = []
        for row in rows:
            local_image = None
            if row.get("image_url"):
                # One at a time; the uplink is usually a phone hotspot
                local_image = await self.image_fetcher.fetch(row["image_url"], str(row["id"]))
                if local_image:
                    report.images_downloaded += 1
                else:
                    report.images_failed += 1

            questions.append(
                Question(
                    id=str(row["id"]),
                    quiz_id=str(row["quiz_id"]),
                    question_text=row.get("question_text") or "",
                    question_type=row.get("question_type") or QUESTION_TYPE_MULTIPLE_CHOICE,
                    options=row.get("options") or None,
                    correct_answer=row.get("correct_answer") or None,
                    points=row.get("points") or DEFAULT_QUESTION_POINTS,
                    order_index=row.get("order_index") or 0,
                    image_url=local_image,
                    passage_text=row.get("passage_text") or None,
                )
            )

        if with_images:
            logger.info(f"Images: {report.images_downloaded} downloaded, {report.images_failed} failed")

        if not self._replace_all("questions", (Question,), questions):
            return

        report.questions = len(questions)
        if not questions:
            logger.warning("0 questions found for active quizzes")
        else:
            logger.info(f"{len(questions)} questions downloaded")

    async def _download_assignments(self, ta_ids: List[Any], labels: Dict[Any, Dict[str, str]]) -> Optional[int]:
        try:
            rows = await self.gateway.select(
                "assignments",
                "id, title, description, type, due_date, teaching_assignment_id",
                {"teaching_assignment_id": in_(ta_ids)},
            )
        except RemoteError as e:
            logger.error(f"Failed to download assignments: {e.message}")
            return None

        assignments = []
        for row in rows:
            label = labels.get(row.get("teaching_assignment_id"), {})
            assignments.append(
                Assignment(
                    id=str(row["id"]),
                    title=row.get("title") or "",
                    description=row.get("description") or "",
                    type=row.get("type") or "TUGAS",
                    due_date=row.get("due_date") or None,
                    subject=label.get("subject", "-"),
                    class_name=label.get("class_name", "-"),
                )
            )

        if not self._replace_all("assignments", (Assignment,), assignments):
            return None

        logger.info(f"{len(assignments)} assignments downloaded")
        return len(assignments)

    def _replace_all(self, label: str, models: Tuple[Any, ...], rows: List[Any]) -> bool:
        """
        Delete every row of `models` (in order) and insert `rows`, in one transaction

        Returns:
            False when the local store rejected the write; the tables keep their old rows
        """
        try:
            with self.session_factory() as db, db.begin():
                for model in models:
                    db.query(model).delete()
                db.add_all(rows)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {label}: {str(e)}")
            return False
        return True

    def _mark_complete(self) -> None:
        with self.session_factory() as db:
            set_meta(db, META_DOWNLOAD_STATUS, DOWNLOAD_STATUS_COMPLETE)
            db.commit()


async def run_download(
    nip: str,
    progress: Optional[ProgressCallback] = None,
    session_factory: sessionmaker = SessionLocal,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DownloadReport:
    """Open the remote clients for one pull and run the coordinator"""
    async with RemoteGateway(transport=transport) as gateway, ImageFetcher(
        images_dir=settings.images_dir,
        remote_url=settings.REMOTE_URL,
        api_key=settings.REMOTE_API_KEY,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
        transport=transport,
    ) as image_fetcher:
        coordinator = DownloadCoordinator(gateway, image_fetcher, session_factory, progress)
        return await coordinator.run(nip)
