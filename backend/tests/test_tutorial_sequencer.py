"""
Tutorial sequencer tests.
Start/advance/finish transitions, click-trigger steps, cross-page navigation
intents, completion requests (including the deferred one after a target link),
and degraded presentation when a step's target is missing.
"""
import pytest

from models import TutorialStatus
from services.tutorial_sequencer import CompletionRequest, NavigationIntent, TutorialSequencer
from services.tutorial_steps import TUTORIAL_STEPS_CONFIG, TutorialStep

CLICK_STEP_INDEX = 3


@pytest.fixture
def sequencer():
    return TutorialSequencer(current_path="/")


@pytest.fixture
def events(sequencer):
    received = []
    sequencer.subscribe(received.append)
    return received


def _completions(events):
    return [e for e in events if isinstance(e, CompletionRequest)]


def _navigations(events):
    return [e for e in events if isinstance(e, NavigationIntent)]


class TestStart:
    def test_start_dashboard(self, sequencer, events):
        assert sequencer.start("dashboard") is True
        assert sequencer.status == TutorialStatus.RUNNING
        assert sequencer.active_set_key == "dashboard"
        assert sequencer.current_step().id == "dashboard-welcome"
        assert events == []

    def test_start_unknown_set_is_noop(self, sequencer):
        assert sequencer.start("doesNotExist") is False
        assert sequencer.status == TutorialStatus.IDLE
        assert sequencer.active_set_key is None

    def test_start_empty_set_is_noop(self, sequencer):
        assert sequencer.start("jobOpeningsSetup") is False
        assert sequencer.is_running is False

    def test_start_index_out_of_range(self, sequencer):
        with pytest.raises(ValueError):
            sequencer.start("dashboard", at_index=99)
        with pytest.raises(ValueError):
            sequencer.start("dashboard", at_index=-1)

    def test_start_on_other_page_step_requests_navigation(self, sequencer, events):
        sequencer.start("dashboard", at_index=4)
        assert _navigations(events) == [
            NavigationIntent(path="/job-openings", step_id="job-openings-search-highlight")
        ]

    def test_start_already_on_page_no_navigation(self, events):
        seq = TutorialSequencer(current_path="/job-openings")
        seq.subscribe(events.append)
        seq.start("dashboard", at_index=4)
        assert _navigations(events) == []

    def test_restart_resets_completed_steps(self, sequencer):
        sequencer.start("dashboard")
        sequencer.advance()
        assert sequencer.step_status("dashboard-welcome") == "completed"
        sequencer.start("dashboard")
        assert sequencer.step_status("dashboard-welcome") == "pending"


class TestAdvance:
    def test_advance_moves_forward(self, sequencer):
        sequencer.start("dashboard")
        assert sequencer.advance() is True
        assert sequencer.current_step_index == 1
        assert sequencer.step_status("dashboard-welcome") == "completed"

    def test_advance_when_idle_is_noop(self, sequencer):
        assert sequencer.advance() is False

    def test_advance_ignored_on_click_trigger_step(self, sequencer):
        sequencer.start("dashboard", at_index=CLICK_STEP_INDEX)
        assert sequencer.advance() is False
        assert sequencer.current_step_index == CLICK_STEP_INDEX
        assert sequencer.is_running

    def test_advance_past_last_step_finishes(self, sequencer, events):
        sequencer.current_path = "/job-openings"
        sequencer.start("dashboard", at_index=5)
        assert sequencer.advance() is True
        assert sequencer.status == TutorialStatus.FINISHED
        assert sequencer.current_step() is None
        assert _completions(events) == [CompletionRequest(set_key="dashboard", reason="finished")]

    def test_walk_without_click_steps_finishes_once(self, events):
        config = {"plain": [
            TutorialStep(id="one", content="1", target="#one"),
            TutorialStep(id="two", content="2", target="#two"),
            TutorialStep(id="three", content="3", target="#three"),
        ]}
        seq = TutorialSequencer(steps_config=config)
        seq.subscribe(events.append)
        seq.start("plain")

        for _ in config["plain"]:
            assert seq.advance() is True

        assert seq.status == TutorialStatus.FINISHED
        assert _completions(events) == [CompletionRequest(set_key="plain", reason="finished")]
        assert all(seq.step_status(step.id) == "completed" for step in config["plain"])

    def test_advance_when_finished_is_noop(self, sequencer, events):
        sequencer.start("dashboard", at_index=5)
        sequencer.finish()
        events.clear()

        assert sequencer.advance() is False
        assert events == []
        assert sequencer.status == TutorialStatus.FINISHED


class TestClickTrigger:
    def test_activate_target_advances_and_navigates(self, sequencer, events):
        sequencer.start("dashboard", at_index=CLICK_STEP_INDEX)
        assert sequencer.activate_target() is True
        assert sequencer.current_step_index == 4
        assert sequencer.step_status("dashboard-add-new-opening-btn") == "completed"
        assert _navigations(events) == [
            NavigationIntent(path="/job-openings", step_id="job-openings-search-highlight")
        ]

    def test_activate_target_ignored_on_regular_step(self, sequencer):
        sequencer.start("dashboard")
        assert sequencer.activate_target() is False
        assert sequencer.current_step_index == 0

    def test_last_step_target_defers_completion_until_page_change(self, events):
        config = {"mini": [
            TutorialStep(id="intro", content="Hi", target="#intro"),
            TutorialStep(id="go", content="Click", target="#link", is_click_trigger_step=True),
        ]}
        seq = TutorialSequencer(steps_config=config)
        seq.subscribe(events.append)
        seq.start("mini", at_index=1)

        assert seq.activate_target() is True
        assert seq.status == TutorialStatus.FINISHED
        assert _completions(events) == []

        assert seq.has_deferred_completion is True
        assert seq.page_changed("/elsewhere") is True
        assert seq.has_deferred_completion is False
        assert _completions(events) == [CompletionRequest(set_key="mini", reason="target_link")]
        assert seq.current_path == "/elsewhere"

        seq.page_changed("/again")
        assert len(_completions(events)) == 1

    def test_page_changed_reports_movement(self, sequencer, events):
        assert sequencer.page_changed("/") is False
        assert sequencer.page_changed("/contacts") is True
        assert sequencer.current_path == "/contacts"
        assert events == []

    def test_last_step_target_chains_into_next_set(self, events):
        config = {
            "first": [TutorialStep(id="go", content="Click", target="#link", is_click_trigger_step=True)],
            "second": [TutorialStep(id="next", content="Next", target="#n")],
        }
        seq = TutorialSequencer(steps_config=config)
        seq.subscribe(events.append)
        seq.start("first")

        assert seq.activate_target(next_set_key="second") is True
        assert seq.active_set_key == "second"
        assert seq.current_step().id == "next"
        assert _completions(events) == []


class TestTerminalTransitions:
    def test_skip_emits_completion_and_goes_idle(self, sequencer, events):
        sequencer.start("dashboard")
        assert sequencer.skip() is True
        assert sequencer.status == TutorialStatus.IDLE
        assert sequencer.active_set_key is None
        assert _completions(events) == [CompletionRequest(set_key="dashboard", reason="skipped")]

    def test_close_does_not_emit_completion(self, sequencer, events):
        sequencer.start("dashboard")
        assert sequencer.close() is True
        assert sequencer.status == TutorialStatus.IDLE
        assert _completions(events) == []

    def test_finish_emits_once(self, sequencer, events):
        sequencer.start("dashboard")
        assert sequencer.finish() is True
        assert sequencer.finish() is False
        assert sequencer.skip() is False
        assert len(_completions(events)) == 1

    def test_unsubscribe_stops_events(self, sequencer):
        received = []
        unsubscribe = sequencer.subscribe(received.append)
        unsubscribe()
        sequencer.start("dashboard")
        sequencer.skip()
        assert received == []


class TestPresentation:
    def test_spotlight_when_target_present(self, sequencer):
        step = TUTORIAL_STEPS_CONFIG["dashboard"][1]
        presentation = sequencer.presentation_for(step, {"#sidebar-main-nav-group"})
        assert presentation["mode"] == "spotlight"
        assert presentation["target"] == "#sidebar-main-nav-group"
        assert presentation["placement"] == "right"
        assert presentation["show_next"] is True

    def test_missing_target_degrades_to_centered(self, sequencer):
        step = TUTORIAL_STEPS_CONFIG["dashboard"][1]
        presentation = sequencer.presentation_for(step, set())
        assert presentation["mode"] == "centered"
        assert presentation["target"] is None
        assert presentation["placement"] == "center"

    def test_click_trigger_hides_next_and_footer(self, sequencer):
        step = TUTORIAL_STEPS_CONFIG["dashboard"][CLICK_STEP_INDEX]
        presentation = sequencer.presentation_for(step, {step.target})
        assert presentation["show_next"] is False
        assert presentation["show_footer"] is False

    def test_snapshot(self, sequencer):
        sequencer.start("dashboard")
        snap = sequencer.snapshot()
        assert snap["status"] == "running"
        assert snap["total_steps"] == 6
        assert snap["current_step"]["id"] == "dashboard-welcome"
