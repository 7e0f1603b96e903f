"""Onboarding tutorial step definitions, organized by tutorial set key.

Targets are DOM selectors rendered by the frontend. Steps with a page_path
are only shown on that page; the sequencer asks the frontend to navigate
there before showing them.
"""
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional


@dataclass(frozen=True)
class TutorialStep:
    id: str
    content: str
    target: Optional[str] = None
    placement: str = "auto"
    page_path: Optional[str] = None
    is_click_trigger_step: bool = False
    hide_footer: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


TUTORIAL_STEPS_CONFIG: Dict[str, List[TutorialStep]] = {
    "dashboard": [
        TutorialStep(
            id="dashboard-welcome",
            target="#dashboard-main-content-area",
            content="Welcome to ProspectFlow! This is your dashboard, your mission control for outreach. Let's take a quick tour.",
            placement="center",
        ),
        TutorialStep(
            id="dashboard-sidebar-nav",
            target="#sidebar-main-nav-group",
            content="Navigate through Job Openings, Contacts, and Companies using these links. This is your main way to get around.",
            placement="right",
        ),
        TutorialStep(
            id="dashboard-sidebar-progress",
            target="#sidebar-usage-progress",
            content="Keep an eye on your usage here. It shows how many entries you've created against your plan's limits.",
            placement="right",
        ),
        TutorialStep(
            id="dashboard-add-new-opening-btn",
            target="#dashboard-add-new-opening-button",
            content="Ready to track a new opportunity? Click here to add a new job opening.",
            placement="bottom",
            is_click_trigger_step=True,
            hide_footer=True,
        ),
        TutorialStep(
            id="job-openings-search-highlight",
            target="#job-openings-search-input",
            content="You're now on the Job Openings page! Use this search bar to quickly find any opening you've logged.",
            placement="bottom",
            page_path="/job-openings",
        ),
        TutorialStep(
            id="tutorial-complete-job-openings",
            target="#job-openings-main-content-area",
            content="Great! You've completed the basic tour. You can now start adding and managing your job prospects. Good luck!",
            placement="center",
            page_path="/job-openings",
        ),
    ],
    # No steps yet; starting it is a logged no-op
    "jobOpeningsSetup": [],
}
