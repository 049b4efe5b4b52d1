import time
from typing import Callable, Dict, List


class TypingTracker:
    """Who is currently typing in one conversation, as seen by one viewer.

    Each signal is stamped with the local clock on receipt and stays valid for
    ``window`` seconds; a renewed signal restarts the window. Nothing is
    deleted explicitly: stale entries drop out whenever the set is read.
    """

    def __init__(self, window: float = 3.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.window = window
        self._clock = clock
        self._last_signal: Dict[str, float] = {}

    def signal(self, user_id: str) -> None:
        self._last_signal[user_id] = self._clock()

    def clear(self, user_id: str) -> None:
        self._last_signal.pop(user_id, None)

    def expire(self) -> List[str]:
        now = self._clock()
        stale = [uid for uid, at in self._last_signal.items() if now - at >= self.window]
        for uid in stale:
            del self._last_signal[uid]
        return stale

    def is_typing(self, user_id: str) -> bool:
        self.expire()
        return user_id in self._last_signal

    def typing_users(self) -> List[str]:
        self.expire()
        return sorted(self._last_signal)

    def next_expiry_in(self) -> float | None:
        """Seconds until the earliest entry lapses, for scheduling a refresh."""
        if not self._last_signal:
            return None
        now = self._clock()
        return max(0.0, min(at + self.window - now for at in self._last_signal.values()))
