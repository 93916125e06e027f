"""
Remote gateway - thin async client for the remote backend's data API

The backend speaks the PostgREST dialect: filtered selects with embedded
lookups (`select=id,user:users(full_name)`), `eq.`/`in.` operators and
upserts with an explicit `on_conflict` target.
Only the download and upload coordinators use this client.
"""
import httpx
import logging
from typing import Any, Dict, Iterable, List, Optional

from exam_tether.config import settings

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Error reported by the remote backend (or by the transport to it)"""

    FOREIGN_KEY_VIOLATION = "23503"
    PERMISSION_CODES = {"PGRST301", "42501"}

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    @property
    def is_foreign_key_violation(self) -> bool:
        return self.code == self.FOREIGN_KEY_VIOLATION or "violates foreign key" in self.message

    @property
    def is_permission_denied(self) -> bool:
        return (
            self.code in self.PERMISSION_CODES
            or self.status_code in (401, 403)
            or "permission" in self.message.lower()
        )


class RemoteUnavailableError(RemoteError):
    """The remote backend could not be reached at all"""


def eq(value: Any) -> str:
    """PostgREST equality filter"""
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"eq.{value}"


def in_(values: Iterable[Any]) -> str:
    """PostgREST membership filter; values are quoted so commas are safe"""
    quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in values)
    return f"in.({quoted})"


class RemoteGateway:
    """
    Async client for the remote data API

    Use as an async context manager so the connection pool is closed:

        async with RemoteGateway() as gateway:
            rows = await gateway.select("teachers", "id", {"nip": eq(nip)})
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.REMOTE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.REMOTE_API_KEY
        self.client = httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            },
            timeout=timeout or settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def select(
        self,
        table: str,
        columns: str,
        filters: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Filtered select

        Args:
            table: Remote table name
            columns: PostgREST select expression, embedded lookups allowed
            filters: {column: "eq.x" | "in.(...)"}
            limit: Optional row limit

        Returns:
            List of row dictionaries

        Raises:
            RemoteError: backend rejected the query
            RemoteUnavailableError: backend unreachable
        """
        params: Dict[str, Any] = {"select": columns}
        params.update(filters or {})
        if limit is not None:
            params["limit"] = limit

        response = await self._request("GET", f"/{table}", params=params)
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def select_one(
        self,
        table: str,
        columns: str,
        filters: Optional[Dict[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, columns, filters, limit=1)
        return rows[0] if rows else None

    async def upsert(self, table: str, payload: Dict[str, Any], on_conflict: str) -> None:
        """
        Idempotent write keyed on a natural conflict target

        Args:
            table: Remote table name
            payload: Row to write
            on_conflict: Comma-separated conflict columns, e.g. "quiz_id,student_id"
        """
        await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": on_conflict},
            json=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def ping(self) -> bool:
        """
        Connectivity probe: a one-row select that must succeed

        Returns:
            False only when the backend cannot be reached

        Raises:
            RemoteError: the backend answered with an error (e.g. access denied)
        """
        try:
            await self.select("teachers", "id", limit=1)
            return True
        except RemoteUnavailableError as e:
            logger.warning(f"Remote backend unreachable: {e.message}")
            return False

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"Cannot reach remote backend: {e}") from e

        if response.is_error:
            raise self._error_from_response(response)

        return response

    @staticmethod
    def _error_from_response(response: httpx.Response) -> RemoteError:
        code = None
        message = f"HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message
            if body.get("details"):
                message = f"{message} ({body['details']})"

        return RemoteError(message, code=str(code) if code is not None else None, status_code=response.status_code)
