"""
Tests for step navigation, cascade resets and pending edits.
"""

import pytest

from studio.creative import registry
from studio.creative.errors import ValidationError
from studio.creative.models import (
    CandidateImage,
    GenerationState,
    JobStatus,
    MediaKind,
    Scene,
    Session,
    SessionStatus,
)
from studio.creative.normalize import session_to_row
from studio.creative.step_gate import (
    StepGate,
    advance,
    can_navigate,
    cascade_reset,
    navigate,
)
from studio.creative.store import InMemorySessionStore


def _finished_session() -> Session:
    scene = Scene(id=1, title="Hook", prompt="Creator at camera", dialogue="Look!")
    scene = registry.append(scene, MediaKind.IMAGE, "https://cdn.test/scene.png")
    scene = registry.append(scene, MediaKind.VIDEO, "https://cdn.test/scene.mp4")
    session = Session(
        id="s1",
        user_id="u1",
        product_id="p1",
        current_step=4,
        furthest_step=4,
        character_prompt="Woman in her late 20s",
        scene_scripts=[registry.clear_media(scene)],
        scenes=[scene],
        generated_characters=[CandidateImage(id=1, url="https://cdn.test/c1.png")],
        selected_character="https://cdn.test/c1.png",
        generated_product_images=[CandidateImage(id=1, url="https://cdn.test/p1.png")],
        selected_product_image="https://cdn.test/p1.png",
        status=SessionStatus.COMPLETED,
        video_progress=100,
    )
    return registry.append_final_video(session, "https://cdn.test/final.mp4", scene_count=1)


class TestNavigation:
    def test_can_navigate_up_to_furthest(self):
        session = Session(id="s1", user_id="u1", product_id="p1", current_step=1, furthest_step=2)
        assert can_navigate(session, 0)
        assert can_navigate(session, 2)
        assert not can_navigate(session, 3)
        assert not can_navigate(session, -1)

    def test_navigate_changes_current_only(self):
        session = _finished_session()
        moved = navigate(session, 1)
        assert moved.current_step == 1
        assert moved.furthest_step == 4
        assert moved.scenes == session.scenes
        assert moved.video_url == session.video_url

    def test_navigate_past_furthest_rejected(self):
        session = Session(id="s1", user_id="u1", product_id="p1", furthest_step=1)
        with pytest.raises(ValidationError):
            navigate(session, 3)

    def test_advance_never_lowers_furthest(self):
        session = Session(id="s1", user_id="u1", product_id="p1", current_step=1, furthest_step=3)
        moved = advance(session, 2)
        assert moved.current_step == 2
        assert moved.furthest_step == 3


class TestCascadeReset:
    def test_reset_to_audience_clears_everything(self):
        reset = cascade_reset(_finished_session(), 0)
        assert reset.generated_characters == []
        assert reset.selected_character is None
        assert reset.generated_product_images == []
        assert reset.scenes == []
        assert reset.final_videos == []
        assert reset.video_url is None
        assert (reset.current_step, reset.furthest_step) == (0, 0)

    def test_reset_to_character_keeps_characters(self):
        reset = cascade_reset(_finished_session(), 1)
        assert len(reset.generated_characters) == 1
        assert reset.selected_character == "https://cdn.test/c1.png"
        assert reset.selected_product_image is None
        assert reset.scenes == []
        assert reset.scene_scripts, "scripts survive so scenes can be re-seeded"

    def test_reset_to_product_shot_keeps_scene_text(self):
        reset = cascade_reset(_finished_session(), 2)
        assert reset.generated_product_images
        assert len(reset.scenes) == 1
        scene = reset.scenes[0]
        assert scene.prompt == "Creator at camera"
        assert scene.dialogue == "Look!"
        assert scene.images == [] and scene.videos == []

    def test_reset_to_scenes_keeps_media(self):
        reset = cascade_reset(_finished_session(), 3)
        assert reset.scenes[0].videos
        assert reset.video_url is None
        assert reset.final_videos == []
        assert reset.status == SessionStatus.DRAFT
        assert reset.video_progress == 0
        assert reset.furthest_step == 3


class TestStepGate:
    @pytest.fixture
    def gate_store(self):
        store = InMemorySessionStore()
        store.put_row(session_to_row(_finished_session()))
        return store

    @pytest.mark.asyncio
    async def test_edit_at_furthest_runs_immediately(self, gate_store):
        gate = StepGate(gate_store)
        calls = []

        async def action():
            calls.append("ran")
            return "done"

        outcome = await gate.request_mutation("s1", 4, action)

        assert outcome.executed
        assert outcome.result == "done"
        assert calls == ["ran"]
        assert gate.pending("s1") is None

    @pytest.mark.asyncio
    async def test_earlier_edit_is_parked(self, gate_store):
        gate = StepGate(gate_store)
        calls = []

        async def action():
            calls.append("ran")

        outcome = await gate.request_mutation("s1", 1, action)

        assert not outcome.executed
        assert outcome.pending_edit_id
        assert (outcome.target_step, outcome.furthest_step) == (1, 4)
        assert calls == []
        session = await gate_store.get("s1")
        assert session.furthest_step == 4
        assert session.selected_product_image == "https://cdn.test/p1.png"

    @pytest.mark.asyncio
    async def test_confirm_resets_then_runs(self, gate_store):
        order = []

        async def on_reset(session_id, target):
            order.append(("reset", target))

        gate = StepGate(gate_store, on_reset=on_reset)

        async def action():
            session = await gate_store.get("s1")
            order.append(("action", session.furthest_step))
            return session

        outcome = await gate.request_mutation("s1", 2, action)
        confirmed = await gate.confirm("s1", outcome.pending_edit_id)

        assert order == [("reset", 2), ("action", 2)]
        assert confirmed.executed
        session = await gate_store.get("s1")
        assert session.furthest_step == 2
        assert session.scenes[0].videos == []
        assert gate.pending("s1") is None

    @pytest.mark.asyncio
    async def test_cancel_leaves_session_untouched(self, gate_store):
        gate = StepGate(gate_store)
        before = await gate_store.get("s1")

        async def action():
            raise AssertionError("must not run")

        outcome = await gate.request_mutation("s1", 0, action)
        gate.cancel("s1", outcome.pending_edit_id)

        assert await gate_store.get("s1") == before
        with pytest.raises(ValidationError):
            await gate.confirm("s1", outcome.pending_edit_id)

    @pytest.mark.asyncio
    async def test_newer_request_replaces_pending(self, gate_store):
        gate = StepGate(gate_store)

        async def action():
            return None

        first = await gate.request_mutation("s1", 1, action)
        second = await gate.request_mutation("s1", 2, action)

        assert gate.pending("s1").id == second.pending_edit_id
        with pytest.raises(ValidationError):
            await gate.confirm("s1", first.pending_edit_id)
        await gate.confirm("s1", second.pending_edit_id)
        assert (await gate_store.get("s1")).furthest_step == 2

    @pytest.mark.asyncio
    async def test_parked_edit_leaves_scene_states(self, gate_store):
        def mark(scene):
            return registry.set_state(scene, MediaKind.VIDEO, GenerationState(status=JobStatus.QUEUED))

        await gate_store.update_scene("s1", 0, mark)
        gate = StepGate(gate_store)

        async def action():
            return None

        outcome = await gate.request_mutation("s1", 3, action)
        assert not outcome.executed
        assert (await gate_store.get("s1")).scenes[0].video_state.status == JobStatus.QUEUED
