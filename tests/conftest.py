"""
Test configuration and fixtures for the job orchestrator.

Provides a temp SQLite database, stub collaborators, a retry executor that
records backoff delays instead of sleeping, and a factory that wires them into
an Orchestrator.
"""

import os
import sys
from typing import Callable, List, Optional

import pytest

# Ensure repo root is on sys.path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Keep importing the app package free of file-logging and seeding side effects
os.environ.setdefault(
    "TUBE_ORCHESTRATOR_CONFIG", os.path.join(ROOT, "tests", "fixtures", "orchestrator.test.yaml")
)

from tube_orchestrator.db import Database
from tube_orchestrator.errors import PermanentProviderError, TransientProviderError
from tube_orchestrator.events import EventLogger
from tube_orchestrator.job_queue import BoundedJobQueue
from tube_orchestrator.media import SimulatedMediaAssembler, SimulatedSpeechSynthesizer, SpeechSynthesizer
from tube_orchestrator.models import AudioArtifact, ChannelConfig, NewsItem, Niche, PromptTemplate
from tube_orchestrator.orchestrator import Orchestrator
from tube_orchestrator.providers import MockTextProvider
from tube_orchestrator.retry import RetryExecutor, RetryPolicy
from tube_orchestrator.sources import NewsSource
from tube_orchestrator.stages import StageRunner
from tube_orchestrator.storage import StorageManager


class StubNewsSource(NewsSource):
    """Returns a fixed list of items and records each fetch"""

    name = "stub"

    def __init__(self, count: int = 3, summaries: bool = True):
        self.items = [
            NewsItem(
                title=f"Headline {i}",
                summary=f"Summary of headline {i}." if summaries else "",
                source="Stub Wire",
                url=f"https://example.com/stub/{i}",
                category="stub",
                tags=["stub"],
            )
            for i in range(1, count + 1)
        ]
        self.calls: List[tuple] = []

    def fetch(self, topic: str, count: int = 5) -> List[NewsItem]:
        self.calls.append((topic, count))
        return [item.model_copy() for item in self.items[:count]]


class RecordingTextProvider(MockTextProvider):
    """MockTextProvider that keeps every prompt it was given"""

    def __init__(self):
        self.prompts: List[str] = []
        self.calls: List[tuple] = []

    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        self.prompts.append(prompt)
        self.calls.append((prompt, temperature, max_tokens))
        return super().generate(prompt, temperature, max_tokens)


class RecordingAssembler(SimulatedMediaAssembler):
    """Simulated assembler that records what it was asked to assemble"""

    def __init__(self, storage: StorageManager):
        super().__init__(storage)
        self.calls: List[dict] = []

    def assemble(self, script, seo, visual_prompts, audio, channel, job_id):
        self.calls.append(
            {
                "script": script,
                "seo": seo,
                "visual_prompts": visual_prompts,
                "audio": audio,
                "channel": channel,
                "job_id": job_id,
            }
        )
        return super().assemble(script, seo, visual_prompts, audio, channel, job_id)


class FailingSpeech(SpeechSynthesizer):
    """Speech synthesizer that fails a set number of times before succeeding"""

    name = "failing"

    def __init__(self, failures: int = 1_000, transient: bool = False):
        self.failures = failures
        self.transient = transient
        self.calls = 0

    def synthesize(self, script: str, job_id: int) -> AudioArtifact:
        self.calls += 1
        if self.calls <= self.failures:
            if self.transient:
                raise TransientProviderError("TTS service timed out", self.name)
            raise PermanentProviderError("TTS voice not available", self.name)
        return AudioArtifact(path="/tmp/narration.wav", duration_seconds=12.0, provider=self.name)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "jobs.db"))


@pytest.fixture
def storage(tmp_path):
    return StorageManager(tmp_path / "runs")


@pytest.fixture
def events(db, storage):
    return EventLogger(db, storage)


@pytest.fixture
def sleep_recorder():
    return RecordingSleep()


@pytest.fixture
def retry_executor(sleep_recorder):
    return RetryExecutor(RetryPolicy(max_retries=3, backoff_base_seconds=2.0), sleep=sleep_recorder)


@pytest.fixture
def text_provider():
    return RecordingTextProvider()


@pytest.fixture
def news_source():
    return StubNewsSource(count=3)


@pytest.fixture
def assembler(storage):
    return RecordingAssembler(storage)


@pytest.fixture
def make_channel(db) -> Callable[..., ChannelConfig]:
    """Create a channel (optionally with a niche and script template)"""

    def _make(
        name: str = "Test Channel",
        platform: str = "YouTube",
        require_approval: bool = False,
        is_active: bool = True,
        niche_name: Optional[str] = "Tech News",
        script_template: Optional[str] = None,
        tone: Optional[str] = None,
    ) -> ChannelConfig:
        niche_id = None
        if niche_name:
            existing = [n for n in db.list_niches() if n.name == niche_name]
            if existing:
                niche = existing[0]
            else:
                templates = []
                if script_template:
                    templates.append(PromptTemplate(stage_type="Script", template_text=script_template))
                niche = db.create_niche(Niche(name=niche_name, templates=templates))
            niche_id = niche.id
        return db.create_channel(
            ChannelConfig(
                name=name,
                platform=platform,
                niche_id=niche_id,
                require_approval=require_approval,
                is_active=is_active,
                tone=tone,
            )
        )

    return _make


@pytest.fixture
def make_orchestrator(db, storage, events, retry_executor, text_provider, news_source, assembler):
    """Build an Orchestrator over the temp database with overridable collaborators"""

    def _make(
        speech: Optional[SpeechSynthesizer] = None,
        news: Optional[NewsSource] = None,
        capacity: int = 10,
    ) -> Orchestrator:
        runner = StageRunner(
            text_provider=text_provider,
            news_source=news or news_source,
            speech=speech or SimulatedSpeechSynthesizer(storage),
            assembler=assembler,
            db=db,
            retry=retry_executor,
            events=events,
        )
        return Orchestrator(
            db=db,
            stage_runner=runner,
            queue=BoundedJobQueue(capacity),
            events=events,
            idle_backoff_seconds=0.01,
        )

    return _make
