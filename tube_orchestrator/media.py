"""
Speech synthesis and media assembly collaborators.

The simulated implementations write their inputs into the job's run directory
so a run can be inspected without rendering real audio or video.
"""

import logging
import subprocess
import uuid
from abc import ABC, abstractmethod
from typing import List

from .errors import PermanentProviderError, TransientProviderError
from .models import AudioArtifact, ChannelConfig, SeoMetadata, VisualPrompt
from .segmentation import WORDS_PER_MINUTE, word_count
from .storage import StorageManager

logger = logging.getLogger(__name__)


class SpeechSynthesizer(ABC):
    name: str = "base"

    @abstractmethod
    def synthesize(self, script: str, job_id: int) -> AudioArtifact:
        """Produce narration audio for script"""


class SimulatedSpeechSynthesizer(SpeechSynthesizer):
    """Writes the narration text instead of audio; duration estimated at 150 wpm"""

    name = "simulated"

    def __init__(self, storage: StorageManager):
        self.storage = storage

    def synthesize(self, script: str, job_id: int) -> AudioArtifact:
        path = self.storage.write_text(job_id, "narration.txt", script)
        duration = word_count(script) / WORDS_PER_MINUTE * 60
        logger.info(f"[tts:simulated] Job {job_id}: {duration:.1f}s of narration written to {path}")
        return AudioArtifact(
            path=str(path),
            duration_seconds=round(duration, 2),
            provider=self.name,
            meta={"words": word_count(script)},
        )


class PiperSpeechSynthesizer(SpeechSynthesizer):
    """Shells out to the piper binary"""

    name = "piper"

    def __init__(
        self,
        storage: StorageManager,
        binary: str = "piper",
        voice_model: str = "en_US-amy-medium.onnx",
        timeout_sec: float = 300,
    ):
        self.storage = storage
        self.binary = binary
        self.voice_model = voice_model
        self.timeout = timeout_sec

    def synthesize(self, script: str, job_id: int) -> AudioArtifact:
        output_path = self.storage.artifact_path(job_id, "narration.wav")
        cmd = [self.binary, "--model", self.voice_model, "--output_file", str(output_path)]
        logger.info(f"[tts:piper] Running Piper: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, input=script, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise TransientProviderError(f"Piper timed out after {self.timeout}s", self.name) from e
        except FileNotFoundError as e:
            raise PermanentProviderError(f"Piper binary not found: {self.binary}", self.name) from e

        if result.returncode != 0:
            logger.error(f"[tts:piper] Piper failed: {result.stderr}")
            raise PermanentProviderError(f"Piper synthesis failed: {result.stderr.strip()}", self.name)

        logger.info(f"[tts:piper] Piper synthesis completed: {output_path}")
        return AudioArtifact(
            path=str(output_path),
            duration_seconds=round(word_count(script) / WORDS_PER_MINUTE * 60, 2),
            provider=self.name,
            meta={"voice_model": self.voice_model},
        )


def build_speech_synthesizer(config, storage: StorageManager) -> SpeechSynthesizer:
    provider = config.get("media.speech.provider", "simulated")
    if provider == "simulated":
        return SimulatedSpeechSynthesizer(storage)
    if provider == "piper":
        return PiperSpeechSynthesizer(
            storage,
            binary=config.get("media.speech.piper.binary", "piper"),
            voice_model=config.get("media.speech.piper.voice_model", "en_US-amy-medium.onnx"),
            timeout_sec=config.get("media.speech.piper.timeout_sec", 300),
        )
    raise ValueError(f"Unknown speech provider: {provider}")


def platform_video_url(channel: ChannelConfig, video_id: str) -> str:
    platform = channel.platform.lower()
    if platform == "youtube":
        return f"https://youtube.com/watch?v={video_id}"
    if platform == "tiktok":
        return f"https://tiktok.com/@{channel.name}/video/{video_id}"
    return f"https://{platform}.com/videos/{video_id}"


class MediaAssembler(ABC):
    name: str = "base"

    @abstractmethod
    def assemble(
        self,
        script: str,
        seo: SeoMetadata,
        visual_prompts: List[VisualPrompt],
        audio: AudioArtifact,
        channel: ChannelConfig,
        job_id: int,
    ) -> str:
        """Render and publish; return the published video URL"""


class SimulatedMediaAssembler(MediaAssembler):
    """Writes a render manifest and returns a plausible platform URL"""

    name = "simulated"

    def __init__(self, storage: StorageManager):
        self.storage = storage

    def assemble(
        self,
        script: str,
        seo: SeoMetadata,
        visual_prompts: List[VisualPrompt],
        audio: AudioArtifact,
        channel: ChannelConfig,
        job_id: int,
    ) -> str:
        video_id = uuid.uuid4().hex[:11]
        url = platform_video_url(channel, video_id)
        manifest = {
            "job_id": job_id,
            "channel": {"id": channel.id, "name": channel.name, "platform": channel.platform},
            "script": script,
            "seo": seo.model_dump(),
            "visual_prompts": [p.model_dump() for p in visual_prompts],
            "audio": audio.model_dump(),
            "video_url": url,
        }
        path = self.storage.write_json(job_id, "render_manifest.json", manifest)
        logger.info(f"[assembly:simulated] Job {job_id}: manifest written to {path}, published at {url}")
        return url


def build_media_assembler(config, storage: StorageManager) -> MediaAssembler:
    assembler = config.get("media.assembler", "simulated")
    if assembler == "simulated":
        return SimulatedMediaAssembler(storage)
    raise ValueError(f"Unknown media assembler: {assembler}")
