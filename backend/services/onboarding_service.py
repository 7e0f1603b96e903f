"""Onboarding Service - settings persistence and per-user tutorial sessions.

The tutorial sequencer is pure state; this module is the collaborator that
reads user_settings, decides when the dashboard tour auto-starts, and turns
CompletionRequest events into a single onboarding_complete write.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from database import database
from models import AuditAction, UserSettings
from services.tutorial_sequencer import (
    CompletionRequest,
    NavigationIntent,
    TutorialEvent,
    TutorialSequencer,
)
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

AUTO_START_SET_KEY = "dashboard"
AUTO_START_PATH = "/"
COMPLETION_FAILED_NOTICE = "We couldn't save your onboarding progress. It will be retried next time."


# =============================================================================
# Settings
# =============================================================================

async def get_settings(user_id: str) -> Optional[UserSettings]:
    """Load user settings. Missing row -> defaults; read failure -> None."""
    try:
        db = database.get_db()
        doc = await db.user_settings.find_one({"user_id": user_id}, {"_id": 0})
    except Exception as e:
        logger.error(f"Error fetching user settings for {user_id}: {e}")
        return None

    if not doc:
        return UserSettings(user_id=user_id)
    return UserSettings(**doc)


async def mark_onboarding_complete(user_id: str) -> bool:
    """
    Persist onboarding_complete = true.

    Returns False when it was already set (no write). Write failures propagate
    so the caller can surface them.
    """
    db = database.get_db()
    existing = await db.user_settings.find_one({"user_id": user_id}, {"_id": 0, "onboarding_complete": 1})
    if existing and existing.get("onboarding_complete"):
        return False

    await db.user_settings.update_one(
        {"user_id": user_id},
        {"$set": {
            "user_id": user_id,
            "onboarding_complete": True,
            "updated_at": datetime.now(timezone.utc),
        }},
        upsert=True
    )

    await create_audit_log(
        action=AuditAction.ONBOARDING_COMPLETED,
        actor_id=user_id,
        resource_type="user_settings",
        resource_id=user_id,
    )
    logger.info(f"Onboarding marked complete for user {user_id}")
    return True


def should_auto_start(settings: Optional[UserSettings], current_path: str, is_running: bool) -> bool:
    """Dashboard tour starts by itself only for new users on the dashboard page."""
    if settings is None or settings.onboarding_complete:
        return False
    return current_path == AUTO_START_PATH and not is_running


# =============================================================================
# Sessions
# =============================================================================

class TutorialSession:
    """One user's tutorial run plus the side effects of its events."""

    def __init__(self, user_id: str, sequencer: Optional[TutorialSequencer] = None):
        self.user_id = user_id
        self.sequencer = sequencer or TutorialSequencer()
        self.lock = asyncio.Lock()
        self.pending = 0
        self._events: List[TutorialEvent] = []
        self.sequencer.subscribe(self._events.append)

    @property
    def is_idle(self) -> bool:
        """Nothing running and no completion waiting on a page change."""
        return not self.sequencer.is_running and not self.sequencer.has_deferred_completion

    async def sync_with_settings(self, current_path: Optional[str] = None) -> Dict[str, Any]:
        """Reconcile the run with stored settings; auto-start the dashboard tour when due."""
        if current_path is not None:
            self.sequencer.current_path = current_path

        settings = await get_settings(self.user_id)
        if (
            settings is not None
            and settings.onboarding_complete
            and self.sequencer.is_running
            and self.sequencer.active_set_key == AUTO_START_SET_KEY
        ):
            logger.info(f"Onboarding already complete for {self.user_id}; closing dashboard tutorial")
            self.sequencer.close()

        auto_started = False
        if should_auto_start(settings, self.sequencer.current_path, self.sequencer.is_running):
            auto_started = self.sequencer.start(AUTO_START_SET_KEY)

        result = await self._drain(auto_started)
        result["onboarding_complete"] = settings.onboarding_complete if settings else None
        result["auto_started"] = auto_started
        return result

    async def apply(self, action: Callable[[TutorialSequencer], bool]) -> Dict[str, Any]:
        """Run one transition against the sequencer and handle what it emitted."""
        changed = action(self.sequencer)
        return await self._drain(changed)

    async def _drain(self, changed: bool) -> Dict[str, Any]:
        events = list(self._events)
        self._events.clear()

        navigation = []
        notice = None
        for event in events:
            if isinstance(event, NavigationIntent):
                navigation.append(asdict(event))
            elif isinstance(event, CompletionRequest):
                notice = await self._persist_completion(event) or notice

        return {
            "changed": changed,
            "state": self.sequencer.snapshot(),
            "navigation": navigation,
            "notice": notice,
        }

    async def _persist_completion(self, request: CompletionRequest) -> Optional[str]:
        """One persistence attempt per request. Returns a notice on failure."""
        try:
            await mark_onboarding_complete(self.user_id)
        except Exception as e:
            logger.error(
                f"Failed to persist onboarding completion for {self.user_id} "
                f"(tutorial={request.set_key}, reason={request.reason}): {e}"
            )
            if self.sequencer.is_running:
                # a new run started while the write was in flight
                return None
            return COMPLETION_FAILED_NOTICE
        return None


class TutorialSessionRegistry:
    """
    In-process map of user id -> TutorialSession.

    Only sessions with a run in progress (or a deferred completion) are kept;
    a session is dropped when the last request using it leaves it idle.
    """

    def __init__(self, sequencer_factory: Callable[[], TutorialSequencer] = TutorialSequencer):
        self._sessions: Dict[str, TutorialSession] = {}
        self._factory = sequencer_factory

    def get(self, user_id: str) -> TutorialSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = TutorialSession(user_id, self._factory())
            self._sessions[user_id] = session
        return session

    def peek(self, user_id: str) -> Optional[TutorialSession]:
        """Existing session or None; never creates one."""
        return self._sessions.get(user_id)

    @asynccontextmanager
    async def use(self, user_id: str) -> AsyncIterator[TutorialSession]:
        """Hold the user's session lock for one request, then release the session if idle."""
        session = self.get(user_id)
        session.pending += 1
        try:
            async with session.lock:
                yield session
        finally:
            session.pending -= 1
            if session.pending == 0 and session.is_idle and self._sessions.get(user_id) is session:
                self.discard(user_id)
                logger.debug(f"Released idle tutorial session for {user_id}")

    def discard(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


# Singleton instance
tutorial_sessions = TutorialSessionRegistry()
