"""In-memory conversation context store with size and staleness limits."""
import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from models.conversation import ConversationContext, Role, Turn
from config import SYSTEM_PROMPT, MAX_CONTEXT_TURNS

logger = logging.getLogger(__name__)


class ContextStore:
    """
    Process-wide store of per-connection conversation windows.

    Every context starts with the system prompt turn and keeps at most
    ``max_turns`` user/assistant turns after it, evicting the oldest first.
    Contexts are dropped on explicit reset, after a delay once the
    connection closes, or by the periodic staleness sweep.

    The mapping and each turn list are guarded by a single lock, so the
    store is safe to share between the event loop and worker threads.
    Delayed eviction and the sweeper need a running asyncio loop.
    """

    def __init__(
        self,
        system_prompt: str = SYSTEM_PROMPT,
        max_turns: int = MAX_CONTEXT_TURNS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize an empty store.

        Args:
            system_prompt: Content of the system turn seeded into each context
            max_turns: Maximum number of non-system turns retained
            clock: Source of turn timestamps (defaults to the current UTC time)
        """
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")

        self.system_prompt = system_prompt
        self.max_turns = max_turns
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._contexts: Dict[str, ConversationContext] = {}
        self._preferences: Dict[str, Dict[str, Any]] = {}
        self._pending_evictions: Dict[str, asyncio.TimerHandle] = {}
        self._connections: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._contexts

    def append(self, connection_id: str, role: Union[Role, str], content: str) -> List[Turn]:
        """
        Append a timestamped turn, creating the context if needed, then trim.

        Args:
            connection_id: Opaque connection identity
            role: Role of the new turn (user or assistant)
            content: Message text

        Returns:
            Snapshot of the full turn sequence, system turn first
        """
        role = Role(role)
        if role is Role.SYSTEM:
            raise ValueError("The system turn is seeded by the store and cannot be appended")

        with self._lock:
            context = self._contexts.get(connection_id)
            if context is None:
                context = ConversationContext(
                    connection_id=connection_id,
                    turns=[Turn(role=Role.SYSTEM, content=self.system_prompt)]
                )
                self._contexts[connection_id] = context
                logger.info(f"Created context for connection {connection_id}")

            context.turns.append(Turn(role=role, content=content, created_at=self._clock()))

            overflow = context.non_system_count() - self.max_turns
            if overflow > 0:
                del context.turns[1:1 + overflow]
                logger.debug(f"Trimmed {overflow} turn(s) from context {connection_id}")

            return list(context.turns)

    def get(self, connection_id: str) -> Optional[List[Turn]]:
        """Return a snapshot of the turns for a connection, or None if absent."""
        with self._lock:
            context = self._contexts.get(connection_id)
            return list(context.turns) if context else None

    def reset(self, connection_id: str) -> None:
        """Discard the context and preferences for a connection. No-op if absent."""
        with self._lock:
            existed = self._contexts.pop(connection_id, None) is not None
            self._preferences.pop(connection_id, None)

        if existed:
            logger.info(f"Reset context for connection {connection_id}")

    def set_preferences(self, connection_id: str, preferences: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge client-supplied preference data for a connection.

        Preferences are kept apart from the turn sequence and are never
        sent to a provider.

        Returns:
            The merged preferences
        """
        with self._lock:
            merged = self._preferences.setdefault(connection_id, {})
            merged.update(preferences)
            return dict(merged)

    def get_preferences(self, connection_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._preferences.get(connection_id, {}))

    def schedule_delayed_eviction(self, connection_id: str, delay_seconds: float) -> None:
        """
        Discard the connection's context after ``delay_seconds``.

        A later call for the same id replaces the pending eviction, and
        cancel_eviction() keeps the context alive for a reconnecting client.
        """
        loop = asyncio.get_running_loop()

        with self._lock:
            previous = self._pending_evictions.pop(connection_id, None)
            if previous is not None:
                previous.cancel()
            self._pending_evictions[connection_id] = loop.call_later(
                delay_seconds, self._evict, connection_id
            )

        logger.info(f"Scheduled eviction of context {connection_id} in {delay_seconds}s")

    def attach(self, connection_id: str) -> int:
        """
        Register a live connection for ``connection_id``.

        Cancels any pending delayed eviction so a reconnecting client resumes
        its context.

        Returns:
            Number of live connections now holding the id
        """
        with self._lock:
            count = self._connections.get(connection_id, 0) + 1
            self._connections[connection_id] = count

        self.cancel_eviction(connection_id)
        return count

    def release(self, connection_id: str, delay_seconds: float) -> bool:
        """
        Unregister a live connection for ``connection_id``.

        The delayed eviction is only scheduled once no other connection
        holds the same id.

        Returns:
            True if an eviction was scheduled
        """
        with self._lock:
            count = self._connections.get(connection_id, 0) - 1
            if count > 0:
                self._connections[connection_id] = count
            else:
                self._connections.pop(connection_id, None)

        if count > 0:
            logger.info(f"Connection {connection_id} still has {count} live connection(s), keeping context")
            return False

        self.schedule_delayed_eviction(connection_id, delay_seconds)
        return True

    def cancel_eviction(self, connection_id: str) -> bool:
        """Cancel a pending delayed eviction. Returns True if one was pending."""
        with self._lock:
            handle = self._pending_evictions.pop(connection_id, None)

        if handle is None:
            return False

        handle.cancel()
        logger.info(f"Cancelled pending eviction of context {connection_id}")
        return True

    def _evict(self, connection_id: str) -> None:
        with self._lock:
            self._pending_evictions.pop(connection_id, None)
            if self._connections.get(connection_id, 0) > 0:
                return
            existed = self._contexts.pop(connection_id, None) is not None
            self._preferences.pop(connection_id, None)

        if existed:
            logger.info(f"Evicted context {connection_id} after disconnect delay")

    def sweep_stale(self, max_age_seconds: float) -> List[str]:
        """
        Remove contexts whose newest turn is older than ``max_age_seconds``.

        Contexts holding only the untimestamped system turn are never stale.

        Returns:
            Connection ids that were removed
        """
        max_age = timedelta(seconds=max_age_seconds)
        now = self._clock()
        removed = []

        with self._lock:
            for connection_id, context in list(self._contexts.items()):
                last_activity = context.last_activity
                if last_activity is not None and now - last_activity > max_age:
                    del self._contexts[connection_id]
                    self._preferences.pop(connection_id, None)
                    removed.append(connection_id)

        if removed:
            logger.info(f"Swept {len(removed)} stale context(s)")
        return removed

    async def run_sweeper(self, interval_seconds: float, max_age_seconds: float) -> None:
        """Call sweep_stale() every ``interval_seconds`` until cancelled."""
        logger.info(
            f"Context sweeper started: interval={interval_seconds}s, max_age={max_age_seconds}s"
        )
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep_stale(max_age_seconds)
            except Exception as e:
                logger.error(f"Context sweep failed: {e}", exc_info=True)

    def shutdown(self) -> None:
        """Cancel every pending delayed eviction."""
        with self._lock:
            handles = list(self._pending_evictions.values())
            self._pending_evictions.clear()

        for handle in handles:
            handle.cancel()
