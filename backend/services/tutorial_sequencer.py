"""Tutorial Step Sequencer - walks a user through a named tutorial set.

The sequencer owns only the run state (active set, step index, status). It
never touches the page: when a step lives on another page it emits a
NavigationIntent, and when the run ends in a way that should mark onboarding
as done it emits a CompletionRequest. Callers subscribe to these events and
perform the navigation / persistence themselves.

States: idle -> running -> finished (or back to idle on skip/close).

Click-trigger steps can only be left through activate_target(); a generic
advance() on them is ignored so a mandatory interaction cannot be skipped.
"""
from dataclasses import dataclass
from typing import Callable, Collection, Dict, List, Optional, Set, Union
import logging

from models import TutorialStatus
from services.tutorial_steps import TUTORIAL_STEPS_CONFIG, TutorialStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationIntent:
    """Frontend should route to `path` before showing `step_id`."""
    path: str
    step_id: str


@dataclass(frozen=True)
class CompletionRequest:
    """Persist onboarding_complete for the user. Emitted once per terminal transition."""
    set_key: str
    reason: str  # finished | skipped | target_link


TutorialEvent = Union[NavigationIntent, CompletionRequest]
TutorialListener = Callable[[TutorialEvent], None]


class TutorialSequencer:
    """State machine for one user's tutorial run."""

    def __init__(
        self,
        steps_config: Optional[Dict[str, List[TutorialStep]]] = None,
        current_path: str = "/",
    ):
        self._config = steps_config if steps_config is not None else TUTORIAL_STEPS_CONFIG
        self._listeners: List[TutorialListener] = []
        self.status = TutorialStatus.IDLE
        self.active_set_key: Optional[str] = None
        self.current_step_index = 0
        self.current_path = current_path
        self._completed_steps: Set[str] = set()
        self._deferred_completion: Optional[str] = None

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def subscribe(self, listener: TutorialListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: TutorialEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.status == TutorialStatus.RUNNING

    @property
    def has_deferred_completion(self) -> bool:
        return self._deferred_completion is not None

    @property
    def active_set(self) -> List[TutorialStep]:
        if self.active_set_key is None:
            return []
        return self._config.get(self.active_set_key, [])

    def current_step(self) -> Optional[TutorialStep]:
        if not self.is_running:
            return None
        return self.active_set[self.current_step_index]

    def _is_last_step(self) -> bool:
        return self.current_step_index >= len(self.active_set) - 1

    def _reset(self, status: TutorialStatus) -> None:
        self.status = status
        self.current_step_index = 0
        if status == TutorialStatus.IDLE:
            self.active_set_key = None

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def start(self, set_key: str, at_index: int = 0) -> bool:
        """Begin (or restart) a tutorial set at the given step."""
        steps = self._config.get(set_key)
        if not steps:
            logger.warning(f"No steps found for tutorial key: {set_key}")
            return False
        if at_index < 0 or at_index >= len(steps):
            raise ValueError(f"Step index {at_index} out of range for tutorial '{set_key}'")

        logger.info(f"Starting tutorial: {set_key} at step {at_index}")
        self.active_set_key = set_key
        self.current_step_index = at_index
        self.status = TutorialStatus.RUNNING
        self._completed_steps = set()
        self._request_navigation_if_needed(steps[at_index])
        return True

    def advance(self) -> bool:
        """Generic "next" signal. Ignored on click-trigger steps."""
        step = self.current_step()
        if step is None:
            return False
        if step.is_click_trigger_step:
            logger.info(f"Ignoring next on click-trigger step {step.id}; waiting for target activation")
            return False
        return self._move_forward(step)

    def activate_target(self, next_set_key: Optional[str] = None, next_index: int = 0) -> bool:
        """
        The user activated the highlighted element of a click-trigger step.

        On the last step, chains into next_set_key when given; otherwise the
        run finishes and the completion request waits for the navigation the
        activated link performs (see page_changed).
        """
        step = self.current_step()
        if step is None or not step.is_click_trigger_step:
            return False

        self._completed_steps.add(step.id)
        if not self._is_last_step():
            return self._move_forward(step)

        if next_set_key:
            return self.start(next_set_key, next_index)

        finished_key = self.active_set_key
        self._reset(TutorialStatus.FINISHED)
        self._deferred_completion = finished_key
        logger.info(f"Tutorial {finished_key} finished by target activation")
        return True

    def skip(self) -> bool:
        """User skipped the tour. Counts as onboarding done."""
        if not self.is_running:
            return False
        set_key = self.active_set_key
        self._reset(TutorialStatus.IDLE)
        logger.info(f"Tutorial {set_key} skipped")
        self._emit(CompletionRequest(set_key=set_key, reason="skipped"))
        return True

    def finish(self) -> bool:
        if not self.is_running:
            return False
        set_key = self.active_set_key
        self._reset(TutorialStatus.FINISHED)
        logger.info(f"Tutorial {set_key} finished")
        self._emit(CompletionRequest(set_key=set_key, reason="finished"))
        return True

    def close(self) -> bool:
        """Dismiss the tour without marking onboarding complete."""
        if not self.is_running:
            return False
        logger.info(f"Tutorial {self.active_set_key} closed")
        self._reset(TutorialStatus.IDLE)
        return True

    def page_changed(self, path: str) -> bool:
        """
        Frontend reports the page it is now showing.

        True when the path moved or a deferred completion was released.
        """
        moved = path != self.current_path
        self.current_path = path
        if self._deferred_completion is None:
            return moved
        set_key = self._deferred_completion
        self._deferred_completion = None
        self._emit(CompletionRequest(set_key=set_key, reason="target_link"))
        return True

    def _move_forward(self, step: TutorialStep) -> bool:
        self._completed_steps.add(step.id)
        if self._is_last_step():
            return self.finish()
        self.current_step_index += 1
        self._request_navigation_if_needed(self.active_set[self.current_step_index])
        return True

    def _request_navigation_if_needed(self, step: TutorialStep) -> None:
        if step.page_path and step.page_path != self.current_path:
            logger.info(f"Navigating to {step.page_path} for step {step.id}")
            self._emit(NavigationIntent(path=step.page_path, step_id=step.id))

    # -------------------------------------------------------------------------
    # Step bookkeeping
    # -------------------------------------------------------------------------

    def complete_step(self, step_id: str) -> None:
        self._completed_steps.add(step_id)

    def step_status(self, step_id: str) -> str:
        return "completed" if step_id in self._completed_steps else "pending"

    # -------------------------------------------------------------------------
    # Presentation
    # -------------------------------------------------------------------------

    @staticmethod
    def target_resolvable(step: TutorialStep, available_targets: Collection[str]) -> bool:
        return step.target is not None and step.target in available_targets

    def presentation_for(
        self,
        step: TutorialStep,
        available_targets: Optional[Collection[str]] = None,
    ) -> Dict:
        """How the frontend should render a step given the targets present on the page.

        A missing target degrades to a centered tooltip without spotlight.
        """
        resolvable = self.target_resolvable(step, available_targets or ())
        if not resolvable and step.target is not None:
            logger.warning(f"Target element not found for step {step.id}: {step.target}")
        return {
            "step_id": step.id,
            "mode": "spotlight" if resolvable else "centered",
            "target": step.target if resolvable else None,
            "placement": step.placement if resolvable else "center",
            "show_footer": not step.hide_footer,
            "show_next": not step.is_click_trigger_step,
        }

    def snapshot(self) -> Dict:
        step = self.current_step()
        return {
            "status": self.status.value,
            "is_running": self.is_running,
            "active_set_key": self.active_set_key,
            "current_step_index": self.current_step_index,
            "total_steps": len(self.active_set),
            "current_step": step.to_dict() if step else None,
            "current_path": self.current_path,
            "completed_steps": sorted(self._completed_steps),
        }
