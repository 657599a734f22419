"""
Scene video stitcher — moviepy.

Downloads the selected clip of every included scene, trims each to its scene
duration, overlaps neighbours by TRANSITION_DURATION with the requested
transition and uploads the result to R2.

Progress is reported through a callback as (stage, percent, message):
  downloading  0–30   one step per clip
  processing   30     clips loaded and normalized
  stitching    30–80  frame encoding
  uploading    80
  complete     100

Runs synchronously; callers put it on a worker thread.
"""

import os
import logging
import tempfile
from typing import Callable

import requests
from proglog import ProgressBarLogger

from . import storage
from .errors import StitchFailed
from .models import AssemblyInput, AssemblyStage, TransitionType

logger = logging.getLogger(__name__)

TRANSITION_DURATION = 0.5
OUTPUT_HEIGHT = 720

ProgressCallback = Callable[[AssemblyStage, int, str], None]

CROSSFADE_TRANSITIONS = {TransitionType.FADE, TransitionType.DISSOLVE, TransitionType.CIRCLE_OPEN}
# the incoming clip enters from this side
SLIDE_SIDES = {
    TransitionType.WIPE_LEFT: "right",
    TransitionType.WIPE_RIGHT: "left",
    TransitionType.SLIDE_UP: "bottom",
}


class _EncodeProgress(ProgressBarLogger):
    """Maps moviepy's frame counter onto the 30–80% stitching window."""

    def __init__(self, report: ProgressCallback):
        super().__init__()
        self._report = report
        self._last = -1

    def bars_callback(self, bar, attr, value, old_value=None):
        if bar != "frame_index" or attr != "index":
            return
        total = self.bars[bar].get("total") or 0
        if not total:
            return
        pct = 30 + int(min(value, total) / total * 50)
        if pct != self._last:
            self._last = pct
            self._report(AssemblyStage.STITCHING, pct, "Stitching scenes")


def overlap_for(transition: TransitionType) -> float:
    return 0.0 if transition == TransitionType.NONE else TRANSITION_DURATION


def _download(url: str, path: str):
    with requests.get(url, stream=True, timeout=120) as r:
        r.raise_for_status()
        with open(path, "wb") as f:
            for chunk in r.iter_content(chunk_size=1024 * 64):
                f.write(chunk)


def _apply_transition(clip, transition: TransitionType, vfx):
    if transition in CROSSFADE_TRANSITIONS:
        return clip.with_effects([vfx.CrossFadeIn(TRANSITION_DURATION)])
    side = SLIDE_SIDES.get(transition)
    if side:
        return clip.with_effects([vfx.SlideIn(TRANSITION_DURATION, side)])
    return clip


def stitch_scenes(session_id: str, inputs: list[AssemblyInput], report: ProgressCallback) -> str:
    """Returns the public URL of the final video."""
    if not inputs:
        raise StitchFailed("No scene videos to stitch")

    if len(inputs) == 1:
        # nothing to join; the scene clip is the final video
        report(AssemblyStage.COMPLETE, 100, "Video ready")
        return inputs[0].video_url

    # Lazy import to avoid crashing if ffmpeg is not installed
    from moviepy import CompositeVideoClip, VideoFileClip, vfx

    temp_files: list[str] = []
    clips = []
    final_clip = None
    output_path = None
    n = len(inputs)

    try:
        # ── 1. Download ──────────────────────────────────────────────
        for i, item in enumerate(inputs):
            report(AssemblyStage.DOWNLOADING, round(i / n * 30), f"Downloading scene {i + 1}/{n}")
            tf = tempfile.NamedTemporaryFile(suffix=".mp4", delete=False)
            tf.close()
            temp_files.append(tf.name)
            try:
                _download(item.video_url, tf.name)
            except requests.exceptions.RequestException as e:
                raise StitchFailed(f"Failed to download scene {i + 1}: {e}") from e

        # ── 2. Load + normalize ──────────────────────────────────────
        report(AssemblyStage.PROCESSING, 30, "Processing clips")
        for path, item in zip(temp_files, inputs):
            clip = VideoFileClip(path).resized(height=OUTPUT_HEIGHT)
            if item.duration and item.duration < clip.duration:
                clip = clip.subclipped(0, item.duration)
            clips.append(clip)

        # ── 3. Lay out with per-scene transitions ────────────────────
        placed = []
        start = 0.0
        for i, clip in enumerate(clips):
            if i > 0:
                transition = inputs[i - 1].transition
                start -= overlap_for(transition)
                clip = _apply_transition(clip, transition, vfx)
            placed.append(clip.with_start(max(0.0, start)))
            start = max(0.0, start) + clip.duration

        width = max(c.w for c in clips)
        final_clip = CompositeVideoClip(placed, size=(width, OUTPUT_HEIGHT))

        out = tempfile.NamedTemporaryFile(suffix=".mp4", delete=False)
        output_path = out.name
        out.close()

        report(AssemblyStage.STITCHING, 30, "Stitching scenes")
        logger.info(f"Session {session_id}: writing {n} scenes ({final_clip.duration:.1f}s) to {output_path}")
        final_clip.write_videofile(
            output_path,
            codec="libx264",
            audio_codec="aac",
            fps=24,
            logger=_EncodeProgress(report),
        )

        # ── 4. Upload ────────────────────────────────────────────────
        report(AssemblyStage.UPLOADING, 80, "Uploading final video")
        url = storage.upload_file(session_id, "final", output_path, "video/mp4")

        report(AssemblyStage.COMPLETE, 100, "Video ready")
        return url

    except StitchFailed:
        raise
    except Exception as e:
        raise StitchFailed(f"Stitching failed: {e}") from e

    finally:
        if final_clip is not None:
            final_clip.close()
        for clip in clips:
            clip.close()
        for path in temp_files:
            if os.path.exists(path):
                os.remove(path)
        if output_path and os.path.exists(output_path):
            os.remove(output_path)
