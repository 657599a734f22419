"""
Pytest Configuration and Fixtures

Fake image generator, video provider and stitcher so the whole session flow
runs in-process without Gemini, Kie.ai, R2 or ffmpeg.
"""

import threading

import pytest

from studio import metrics, presets
from studio.kie import ProviderStatus
from studio.creative.jobs import InMemoryJobStore, SceneJobService
from studio.creative.models import AssemblyStage, AudienceProfile
from studio.creative.progress_store import MemoryProgressStore
from studio.creative.session_service import SessionService
from studio.creative.store import InMemorySessionStore

PRODUCT = {
    "id": "prod-1",
    "title": "Glow Serum",
    "description": "Vitamin C serum for a brighter complexion",
    "price": "29.99",
    "image_url": "https://cdn.test/products/glow-serum.png",
}


class FakeImages:
    """Stands in for ImageGenerator; every call returns a new unique URL."""

    def __init__(self):
        self.calls = []
        self.fail_positions = set()
        self.fail_scenes = False
        self._counter = 0

    def _url(self, session_id, name):
        self._counter += 1
        return f"https://cdn.test/{session_id}/{name}-{self._counter}.png"

    async def character(self, session_id, avatar, variation, position):
        self.calls.append(("character", position))
        if position in self.fail_positions:
            raise RuntimeError("image model refused")
        return self._url(session_id, f"character-{position + 1}")

    async def product_shot(self, session_id, character_url, product, variation, position, character_description=""):
        self.calls.append(("product_shot", position, character_url))
        if position in self.fail_positions:
            raise RuntimeError("image model refused")
        return self._url(session_id, f"product-shot-{position + 1}")

    async def scene_image(self, session_id, scene_index, visuals, reference_url):
        self.calls.append(("scene_image", scene_index, reference_url))
        if self.fail_scenes:
            raise RuntimeError("image model refused")
        return self._url(session_id, f"scene-{scene_index + 1}")


class FakeVideoProvider:
    """
    Synchronous like KieVideoProvider. Each task walks through `script`
    (a list of ProviderStatus) and then reports completed.
    """

    def __init__(self):
        self.submitted = []
        self.fail_submit_for = set()
        self.script = []
        self.final = None
        self._polls = {}

    def submit(self, prompt, image_url):
        if image_url in self.fail_submit_for or "*" in self.fail_submit_for:
            raise RuntimeError("provider rejected the request")
        task_id = f"task-{len(self.submitted) + 1}"
        self.submitted.append((task_id, prompt, image_url))
        return task_id

    def status(self, task_id):
        count = self._polls.get(task_id, 0)
        self._polls[task_id] = count + 1
        if count < len(self.script):
            step = self.script[count]
            if isinstance(step, Exception):
                raise step
            return step
        if self.final is not None:
            return self.final
        return ProviderStatus("completed", 100, video_url=f"https://cdn.test/videos/{task_id}.mp4")


class FakeStitcher:
    def __init__(self, url="https://cdn.test/final/ad.mp4"):
        self.url = url
        self.calls = []
        self.error = None
        self.gate = None
        self.uploads = 0
        self.finished = threading.Event()

    def __call__(self, session_id, inputs, report):
        self.calls.append((session_id, list(inputs)))
        self.finished.clear()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            report(AssemblyStage.DOWNLOADING, 10, "Downloading scene 1")
            report(AssemblyStage.PROCESSING, 30, "Processing clips")
            report(AssemblyStage.STITCHING, 55, "Stitching scenes")
            if self.error:
                raise self.error
            report(AssemblyStage.UPLOADING, 80, "Uploading final video")
            self.uploads += 1
            report(AssemblyStage.COMPLETE, 100, "Video ready")
            return self.url
        finally:
            self.finished.set()


def template_planner(product, audience):
    return presets.fallback_plan(product, audience, "breakdown")


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def planner():
    return template_planner


@pytest.fixture
def store():
    return InMemorySessionStore(products={PRODUCT["id"]: PRODUCT})


@pytest.fixture
def images():
    return FakeImages()


@pytest.fixture
def videos():
    return FakeVideoProvider()


@pytest.fixture
def stitcher():
    return FakeStitcher()


@pytest.fixture
def progress_store():
    return MemoryProgressStore(ttl=60)


@pytest.fixture
def job_service(images, videos):
    return SceneJobService(
        store=InMemoryJobStore(), images=images, videos=videos, poll_interval=0.01, timeout=5,
    )


@pytest.fixture
async def service(store, job_service, images, progress_store, stitcher, planner):
    svc = SessionService(
        store=store,
        jobs=job_service,
        images=images,
        planner=planner,
        progress_store=progress_store,
        stitcher=stitcher,
        poll_interval=0.01,
    )
    yield svc
    await svc.shutdown()


@pytest.fixture
def audience():
    return AudienceProfile(age_group="25-34", gender="Female", interests=["Health"], tone="Friendly")


@pytest.fixture
async def scenes_session(service, audience):
    """A session walked through steps 0–2 so it sits on Scenes."""
    user_id = "user-1"
    session = await service.create_session(user_id, PRODUCT["id"])
    await service.submit_audience(session.id, user_id, audience)
    session = await service.generate_characters(session.id, user_id)
    session = await service.select_character(session.id, user_id, session.generated_characters[0].url)
    session = await service.generate_product_images(session.id, user_id)
    return await service.select_product_image(session.id, user_id, session.generated_product_images[0].url)


@pytest.fixture
def settle(service):
    """Wait for every job runner and the session's poll loop to finish."""
    async def _settle(session_id):
        await service.jobs.drain()
        await service.reconciler.wait(session_id)
    return _settle
