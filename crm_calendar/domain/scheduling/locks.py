"""
Per-agent booking locks

Booking writes for one agent are serialized in-process with a
threading.Lock per (workspace, agent). The database row lock taken by
AgentCalendarRepository.lock() covers multi-process deployments on
backends that honor SELECT ... FOR UPDATE.
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Iterable

logger = logging.getLogger(__name__)


class AgentLockRegistry:
    def __init__(self):
        self._locks: dict[tuple[str, str], Lock] = {}
        self._guard = Lock()

    def _get(self, workspace_id: str, agent_id: str) -> Lock:
        key = (workspace_id, agent_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, workspace_id: str, agent_ids: Iterable[str]):
        """
        Acquire the locks of every given agent.

        Locks are taken in sorted order so two writers touching the same pair
        of agents (an agent reassignment) cannot deadlock.
        """
        keys = sorted({a for a in agent_ids if a})
        acquired = []
        try:
            for agent_id in keys:
                lock = self._get(workspace_id, agent_id)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


agent_locks = AgentLockRegistry()
