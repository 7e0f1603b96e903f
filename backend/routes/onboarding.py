"""Onboarding Routes - onboarding flag and the guided tutorial run.

GET  /api/onboarding/status?path=/           - onboarding_complete + whether the tour should auto-start
GET  /api/onboarding/tutorials/{set_key}     - step descriptors for a tutorial set
GET  /api/onboarding/tutorial?targets=...    - current run state and how to render the current step
POST /api/onboarding/tutorial/start          - start (or restart) a set at a step
POST /api/onboarding/tutorial/advance        - "next" button
POST /api/onboarding/tutorial/activate-target - user clicked the highlighted element
POST /api/onboarding/tutorial/skip | finish | close
POST /api/onboarding/tutorial/page           - frontend reports a page change

Every POST returns {changed, state, navigation, notice}. The frontend performs
the navigation entries in order; notice is a non-blocking message shown when
the onboarding flag could not be saved.
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from middleware import require_auth
from models import PageChangedRequest, TutorialStartRequest, TutorialTargetRequest
from services.onboarding_service import get_settings, should_auto_start, tutorial_sessions
from services.tutorial_sequencer import TutorialSequencer
from services.tutorial_steps import TUTORIAL_STEPS_CONFIG
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])


@router.get("/status")
async def get_onboarding_status(request: Request, path: str = Query("/", description="Page the user is on")):
    """Read-only check; does not start anything."""
    user = await require_auth(request)
    session = tutorial_sessions.peek(user["user_id"])
    settings = await get_settings(user["user_id"])
    is_running = session is not None and session.sequencer.is_running

    return {
        "onboarding_complete": settings.onboarding_complete if settings else None,
        "settings_available": settings is not None,
        "should_auto_start": should_auto_start(settings, path, is_running),
    }


@router.get("/tutorials/{set_key}")
async def get_tutorial_steps(set_key: str):
    steps = TUTORIAL_STEPS_CONFIG.get(set_key)
    if steps is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown tutorial: {set_key}"
        )
    return {"set_key": set_key, "steps": [step.to_dict() for step in steps]}


@router.get("/tutorial")
async def get_tutorial_state(request: Request, targets: Optional[List[str]] = Query(None)):
    """
    Run state. When `targets` (element ids present on the page) is given,
    also returns how the current step should be presented.
    """
    user = await require_auth(request)
    session = tutorial_sessions.peek(user["user_id"])
    sequencer = session.sequencer if session is not None else TutorialSequencer()

    state = sequencer.snapshot()
    step = sequencer.current_step()
    presentation = None
    if step is not None and targets is not None:
        presentation = sequencer.presentation_for(step, targets)

    return {"state": state, "presentation": presentation}


@router.post("/tutorial/start")
async def start_tutorial(request: Request, body: TutorialStartRequest):
    user = await require_auth(request)

    async with tutorial_sessions.use(user["user_id"]) as session:
        if body.current_path is not None:
            session.sequencer.current_path = body.current_path
        try:
            return await session.apply(lambda seq: seq.start(body.set_key, body.at_index))
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(e)
            )


@router.post("/tutorial/advance")
async def advance_tutorial(request: Request):
    user = await require_auth(request)
    async with tutorial_sessions.use(user["user_id"]) as session:
        return await session.apply(lambda seq: seq.advance())


@router.post("/tutorial/activate-target")
async def activate_tutorial_target(request: Request, body: Optional[TutorialTargetRequest] = None):
    user = await require_auth(request)
    body = body or TutorialTargetRequest()

    async with tutorial_sessions.use(user["user_id"]) as session:
        try:
            return await session.apply(lambda seq: seq.activate_target(body.next_set_key, body.next_index))
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(e)
            )


@router.post("/tutorial/skip")
async def skip_tutorial(request: Request):
    user = await require_auth(request)
    async with tutorial_sessions.use(user["user_id"]) as session:
        return await session.apply(lambda seq: seq.skip())


@router.post("/tutorial/finish")
async def finish_tutorial(request: Request):
    user = await require_auth(request)
    async with tutorial_sessions.use(user["user_id"]) as session:
        return await session.apply(lambda seq: seq.finish())


@router.post("/tutorial/close")
async def close_tutorial(request: Request):
    """Dismiss without marking onboarding complete."""
    user = await require_auth(request)
    async with tutorial_sessions.use(user["user_id"]) as session:
        return await session.apply(lambda seq: seq.close())


@router.post("/tutorial/page")
async def tutorial_page_changed(request: Request, body: PageChangedRequest):
    """
    Page change reported by the frontend.

    Releases a completion deferred by a target link, then reconciles the run
    with stored settings (which may auto-start the dashboard tour on "/").
    """
    user = await require_auth(request)

    async with tutorial_sessions.use(user["user_id"]) as session:
        result = await session.apply(lambda seq: seq.page_changed(body.path))
        synced = await session.sync_with_settings(body.path)

    return {
        **synced,
        "changed": result["changed"] or synced["changed"],
        "navigation": result["navigation"] + synced["navigation"],
        "notice": result["notice"] or synced["notice"],
    }
