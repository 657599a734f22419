"""
Tests for the media version registry.
"""

import pytest

from studio.creative import registry
from studio.creative.errors import ValidationError
from studio.creative.models import (
    GenerationState,
    JobStatus,
    MediaKind,
    MediaVariant,
    Scene,
    Session,
)


def _scene(**fields) -> Scene:
    return Scene(id=1, title="Hook", prompt="Creator looks at camera", **fields)


class TestAppend:
    def test_first_variant_is_selected(self):
        scene = registry.append(_scene(), MediaKind.IMAGE, "https://cdn.test/a.png", now="t1")

        assert [v.url for v in scene.images] == ["https://cdn.test/a.png"]
        assert scene.images[0].is_new is True
        assert scene.selected_image_index == 0
        assert scene.image_url == "https://cdn.test/a.png"

    def test_newest_first_and_older_demoted(self):
        scene = registry.append(_scene(), MediaKind.VIDEO, "https://cdn.test/v1.mp4")
        scene = registry.select(scene, MediaKind.VIDEO, 0)
        scene = registry.append(scene, MediaKind.VIDEO, "https://cdn.test/v2.mp4")

        assert [v.url for v in scene.videos] == ["https://cdn.test/v2.mp4", "https://cdn.test/v1.mp4"]
        assert [v.is_new for v in scene.videos] == [True, False]
        assert scene.selected_video_index == 0
        assert scene.video_url == "https://cdn.test/v2.mp4"

    def test_original_scene_untouched(self):
        before = _scene()
        registry.append(before, MediaKind.IMAGE, "https://cdn.test/a.png")
        assert before.images == []

    def test_kinds_are_independent(self):
        scene = registry.append(_scene(), MediaKind.IMAGE, "https://cdn.test/a.png")
        assert scene.videos == []
        assert registry.selected_url(scene, MediaKind.VIDEO) is None


class TestSelect:
    def test_select_older_variant(self):
        scene = registry.append(_scene(), MediaKind.IMAGE, "https://cdn.test/a.png")
        scene = registry.append(scene, MediaKind.IMAGE, "https://cdn.test/b.png")

        scene = registry.select(scene, MediaKind.IMAGE, 1)

        assert scene.selected_image_index == 1
        assert registry.selected_url(scene, MediaKind.IMAGE) == "https://cdn.test/a.png"
        assert scene.image_url == "https://cdn.test/a.png"

    @pytest.mark.parametrize("index", [-1, 1, 5])
    def test_out_of_range_rejected(self, index):
        scene = registry.append(_scene(), MediaKind.IMAGE, "https://cdn.test/a.png")
        with pytest.raises(ValidationError):
            registry.select(scene, MediaKind.IMAGE, index)

    def test_select_on_empty_list_rejected(self):
        with pytest.raises(ValidationError):
            registry.select(_scene(), MediaKind.VIDEO, 0)


class TestSelectedUrl:
    def test_falls_back_to_legacy_field(self):
        scene = _scene(video_url="https://cdn.test/legacy.mp4")
        assert registry.selected_url(scene, MediaKind.VIDEO) == "https://cdn.test/legacy.mp4"

    def test_stale_index_uses_newest(self):
        scene = _scene(
            images=[MediaVariant(url="https://cdn.test/a.png", created_at="t1")],
            selected_image_index=3,
        )
        assert registry.selected_url(scene, MediaKind.IMAGE) == "https://cdn.test/a.png"


class TestClearMedia:
    def test_keeps_script_drops_media(self):
        scene = registry.append(_scene(dialogue="Hi"), MediaKind.IMAGE, "https://cdn.test/a.png")
        scene = registry.append(scene, MediaKind.VIDEO, "https://cdn.test/v.mp4")
        scene = registry.set_state(scene, MediaKind.VIDEO, GenerationState(status=JobStatus.GENERATING))

        cleared = registry.clear_media(scene)

        assert cleared.prompt == scene.prompt
        assert cleared.dialogue == "Hi"
        assert cleared.images == [] and cleared.videos == []
        assert cleared.image_url is None and cleared.video_url is None
        assert cleared.video_state == GenerationState()
        assert not cleared.has_pending_job


class TestFinalVideos:
    def test_append_final_video(self):
        session = Session(id="s1", user_id="u1", product_id="p1")
        session = registry.append_final_video(session, "https://cdn.test/final-1.mp4", scene_count=3)
        session = registry.append_final_video(session, "https://cdn.test/final-2.mp4", scene_count=2)

        assert session.video_url == "https://cdn.test/final-2.mp4"
        assert [v.url for v in session.final_videos] == [
            "https://cdn.test/final-2.mp4", "https://cdn.test/final-1.mp4",
        ]
        assert [v.is_new for v in session.final_videos] == [True, False]
        assert session.final_videos[1].scene_count == 3
