"""Sliding-window rate limiting for login and password reset requests."""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

class RateLimiter:
    def __init__(self):
        # Per-process memory; each worker keeps its own window
        self.attempts: Dict[str, List[datetime]] = {}
        self.windows: Dict[str, timedelta] = {}

    def _prune(self, now: datetime) -> None:
        """Forget keys whose last attempt has left its window."""
        stale = [
            key for key, stamps in self.attempts.items()
            if not stamps or now - stamps[-1] >= self.windows.get(key, timedelta(0))
        ]
        for key in stale:
            self.reset(key)

    async def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_minutes: int
    ) -> tuple[bool, Optional[str]]:
        """
        Record an attempt for key unless the window is already full.

        Returns:
            (allowed: bool, error_message: Optional[str])
        """
        now = datetime.now(timezone.utc)
        window = timedelta(minutes=window_minutes)
        self.windows[key] = window
        self._prune(now)

        recent = [ts for ts in self.attempts.get(key, []) if now - ts < window]

        if len(recent) >= max_attempts:
            self.attempts[key] = recent
            wait_seconds = int((min(recent) + window - now).total_seconds())
            logger.warning(f"Rate limit hit for {key.split(':', 1)[0]}")
            return False, f"Too many attempts. Try again in {wait_seconds} seconds"

        recent.append(now)
        self.attempts[key] = recent
        self.windows[key] = window
        return True, None

    def reset(self, key: str) -> None:
        self.attempts.pop(key, None)
        self.windows.pop(key, None)

rate_limiter = RateLimiter()
