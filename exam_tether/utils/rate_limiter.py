"""
Rate limiting for the classroom network

Stops a single device from hammering the laptop (e.g. scripted NIS guessing
on /api/login) without affecting the rest of the class.
"""
import time
from collections import defaultdict
from fastapi import Request, HTTPException
from typing import Dict, List
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    In-memory sliding-window rate limiter keyed by client
    One process serves the whole classroom, so no shared store is needed
    """

    def __init__(self, requests_per_minute: int = 120, requests_per_hour: int = 3000):
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour

        # (window seconds, limit, label) -> {client_id: [timestamps]}
        self.windows = [
            (60, requests_per_minute, "minute"),
            (3600, requests_per_hour, "hour"),
        ]
        self.trackers: Dict[str, Dict[str, List[float]]] = {
            label: defaultdict(list) for _, _, label in self.windows
        }

    def _get_client_id(self, request: Request) -> str:
        """One device on the hotspot = one client address"""
        return request.client.host if request.client else "unknown"

    @staticmethod
    def _prune(tracker: Dict[str, List[float]], cutoff: float) -> None:
        for client_id in list(tracker.keys()):
            tracker[client_id] = [ts for ts in tracker[client_id] if ts > cutoff]
            if not tracker[client_id]:
                del tracker[client_id]

    async def check_rate_limit(self, request: Request) -> None:
        """
        Record the request or reject it

        Raises:
            HTTPException: 429 if any window is full
        """
        client_id = self._get_client_id(request)
        now = time.time()

        for window_seconds, limit, label in self.windows:
            tracker = self.trackers[label]
            self._prune(tracker, now - window_seconds)

            if len(tracker[client_id]) >= limit:
                logger.warning(f"Rate limit exceeded ({label}): {client_id}")
                raise HTTPException(
                    status_code=429,
                    detail={
                        "error": "rate_limit_exceeded",
                        "message": f"Too many requests. Limit: {limit} requests per {label}",
                        "retry_after": window_seconds,
                    },
                )

        for _, _, label in self.windows:
            self.trackers[label][client_id].append(now)

        logger.debug(f"Rate limit check passed: {client_id}")
