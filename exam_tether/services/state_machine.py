"""
Server state machine - gates student traffic on the data lifecycle

    setup --identify--> downloading --succeeded--> ready
                        downloading --failed-----> setup
    ready --identify--> downloading   (teacher refreshes the cache)

The transition table is a pure function; ServerStateMachine owns the live
state, the progress string, the last error and the background download task.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from exam_tether.database import SessionLocal
from exam_tether.models.meta import (
    get_meta,
    META_TEACHER_NAME,
    META_DOWNLOAD_TIME,
    META_DOWNLOAD_STATUS,
    DOWNLOAD_STATUS_COMPLETE,
)
from exam_tether.services.download_service import DownloadError, DownloadReport, ProgressCallback
from exam_tether.services.remote_gateway import RemoteError, RemoteUnavailableError
from exam_tether.services.upload_service import UploadReport

logger = logging.getLogger(__name__)

Downloader = Callable[[str, ProgressCallback], Awaitable[DownloadReport]]
Uploader = Callable[[], Awaitable[UploadReport]]


class ServerState(str, Enum):
    SETUP = "setup"
    DOWNLOADING = "downloading"
    READY = "ready"


class ServerEvent(str, Enum):
    IDENTIFY = "identify"
    DOWNLOAD_SUCCEEDED = "download_succeeded"
    DOWNLOAD_FAILED = "download_failed"


_TRANSITIONS: Dict[Tuple[ServerState, ServerEvent], ServerState] = {
    (ServerState.SETUP, ServerEvent.IDENTIFY): ServerState.DOWNLOADING,
    (ServerState.READY, ServerEvent.IDENTIFY): ServerState.DOWNLOADING,
    (ServerState.DOWNLOADING, ServerEvent.DOWNLOAD_SUCCEEDED): ServerState.READY,
    (ServerState.DOWNLOADING, ServerEvent.DOWNLOAD_FAILED): ServerState.SETUP,
}


class InvalidTransitionError(Exception):
    def __init__(self, state: ServerState, event: ServerEvent):
        super().__init__(f"Event {event.value} is not allowed in state {state.value}")
        self.state = state
        self.event = event


class DownloadInProgressError(InvalidTransitionError):
    """A teacher identified again while a pull is running"""


class UploadInProgressError(Exception):
    pass


def transition(state: ServerState, event: ServerEvent) -> ServerState:
    """Next state for (state, event); raises InvalidTransitionError otherwise"""
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        if state is ServerState.DOWNLOADING and event is ServerEvent.IDENTIFY:
            raise DownloadInProgressError(state, event)
        raise InvalidTransitionError(state, event)


def has_completed_download(db: Session) -> bool:
    return bool(get_meta(db, META_TEACHER_NAME)) and get_meta(db, META_DOWNLOAD_STATUS) == DOWNLOAD_STATUS_COMPLETE


class ServerStateMachine:
    """
    Process-wide server state, shared with the routers through app.state
    """

    def __init__(
        self,
        downloader: Downloader,
        uploader: Uploader,
        session_factory: sessionmaker = SessionLocal,
    ):
        self.downloader = downloader
        self.uploader = uploader
        self.session_factory = session_factory
        self.state = ServerState.SETUP
        self.progress = ""
        self.error: Optional[str] = None
        self.download_task: Optional[asyncio.Task] = None
        self.last_download: Optional[DownloadReport] = None
        self._upload_lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self.state is ServerState.READY

    def _apply(self, event: ServerEvent) -> ServerState:
        previous = self.state
        self.state = transition(self.state, event)
        logger.info(f"Server state: {previous.value} -> {self.state.value}")
        return self.state

    def resume_from_store(self) -> ServerState:
        """Start in ready when a previous run finished a download"""
        with self.session_factory() as db:
            if has_completed_download(db):
                self.state = ServerState.READY
                logger.info(
                    f"Data from a previous session found ({get_meta(db, META_TEACHER_NAME)}); server is ready"
                )
            else:
                self.state = ServerState.SETUP
        return self.state

    def set_progress(self, message: str) -> None:
        self.progress = message

    def start_download(self, nip: str) -> asyncio.Task:
        """
        Move to downloading and launch the pull as a background task

        Raises:
            DownloadInProgressError: a pull is already running
        """
        self._apply(ServerEvent.IDENTIFY)
        self.error = None
        self.progress = "Starting download..."
        self.download_task = asyncio.create_task(self._run_download(nip))
        return self.download_task

    async def _run_download(self, nip: str) -> None:
        try:
            self.last_download = await self.downloader(nip, self.set_progress)
        except DownloadError as e:
            self._fail(str(e))
            return
        except Exception as e:
            logger.error(f"Unexpected download failure: {str(e)}", exc_info=True)
            self._fail(f"Download failed: {str(e)}")
            return

        self._apply(ServerEvent.DOWNLOAD_SUCCEEDED)
        self.error = None
        logger.info("Server ready, students can start their exams")

    def _fail(self, message: str) -> None:
        self._apply(ServerEvent.DOWNLOAD_FAILED)
        self.error = message
        self.progress = ""
        logger.error(f"Download failed: {message}")

    async def upload(self) -> UploadReport:
        """
        Run one upload pass; only one may run at a time

        Raises:
            UploadInProgressError: another upload is running
            RemoteUnavailableError: remote backend unreachable
        """
        if self._upload_lock.locked():
            raise UploadInProgressError("An upload is already running")
        async with self._upload_lock:
            return await self.uploader()

    def snapshot(self, db: Session) -> Dict[str, Optional[str]]:
        """Payload for the state endpoint"""
        return {
            "state": self.state.value,
            "teacher_name": get_meta(db, META_TEACHER_NAME),
            "download_time": get_meta(db, META_DOWNLOAD_TIME),
            "progress": self.progress,
            "error": self.error,
        }

    async def run_auto_upload(self, interval_seconds: int) -> None:
        """Upload pending results every interval while the server is ready"""
        logger.info(f"Automatic upload every {interval_seconds}s")
        while True:
            await asyncio.sleep(interval_seconds)
            if not self.is_ready:
                continue
            try:
                report = await self.upload()
            except UploadInProgressError:
                continue
            except RemoteUnavailableError:
                logger.info("Automatic upload skipped: remote backend unreachable")
                continue
            except RemoteError as e:
                logger.warning(f"Automatic upload skipped: {e.message}")
                continue
            except Exception as e:
                logger.error(f"Automatic upload failed: {str(e)}", exc_info=True)
                continue

            if report.total_pending:
                logger.info(f"Automatic upload: {report.total_uploaded}/{report.total_pending} uploaded")
