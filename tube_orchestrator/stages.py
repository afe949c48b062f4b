"""
Pipeline stages: research, script, approval gate, parallel fan-out, assembly.

Each stage reads its prerequisites from the JobContext, calls collaborators
through the RetryExecutor, and writes its outputs back to the context. Provider
calls are blocking and run in worker threads so the event loop stays free for
the fan-out branches.
"""

import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from .context import ContextKey, JobContext
from .db import Database
from .errors import FanOutJoinError, MissingPrerequisiteError, PermanentProviderError
from .events import JOB_SUSPENDED, EventLogger
from .media import MediaAssembler, SpeechSynthesizer
from .models import AudioArtifact, JobStatus, NewsItem, SeoMetadata, Stage, VisualPrompt
from .providers import TextGenerationProvider
from .retry import RetryExecutor
from .segmentation import estimate_duration, segment_script
from .sources import NewsSource

logger = logging.getLogger(__name__)

# Display name and progress checkpoint recorded on the JobRecord
QUEUED = ("Queued", 0)
RESEARCH_CHECKPOINT = ("Research Agent", 10)
SCRIPT_CHECKPOINT = ("Script Writer", 30)
APPROVAL_CHECKPOINT = ("Awaiting Human Approval", 40)
FAN_OUT_CHECKPOINT = ("Parallel Processing", 50)
ASSEMBLY_CHECKPOINT = ("Rendering Video", 80)
COMPLETED_CHECKPOINT = ("Completed", 100)
FAILED_STAGE_NAME = "Failed"

DEFAULT_TONE = "professional and engaging"
SCRIPT_EXCERPT_CHARS = 500
SHORT_EXCERPT_CHARS = 300

ENRICH_PROMPT = "Create a brief, engaging summary (2-3 sentences) for this news headline: {title}"

FALLBACK_SCRIPT_PROMPT = """Create an engaging video script for a YouTube video about {topic}.

Channel: {channel_name}
Tone: {tone_title}, suitable for text-to-speech narration

News Items:
{news_data}

Generate a complete video script with:
- INTRO: Hook the viewer in the first 10 seconds
- MAIN CONTENT: Cover each news item engagingly
- CONCLUSION: Call to action (like, subscribe, comment)

Format the script clearly for TTS, avoiding special characters and using natural speech patterns."""

TITLE_PROMPT = """Based on this video script, create a compelling YouTube title that is:
- Attention-grabbing but honest (no misleading clickbait)
- 60 characters or less
- Includes relevant keywords
- Uses emojis strategically

Script excerpt: {excerpt}

Generate only the title, nothing else."""

DESCRIPTION_PROMPT = """Based on this video script, create a YouTube video description that:
- Summarizes the video content (3-4 sentences)
- Includes a call-to-action
- Uses relevant keywords naturally
- Includes relevant hashtags at the end

Script excerpt: {excerpt}

Generate only the description."""

TAGS_PROMPT = """Based on this video about {niche}, generate 8-12 relevant YouTube tags.
Tags should be comma-separated, include both broad and specific terms.

Script excerpt: {excerpt}

Generate only the tags as a comma-separated list."""

THUMBNAIL_PROMPT = """Based on this video script, suggest a compelling thumbnail concept.
Describe the visual elements, text overlay, and overall composition in 2-3 sentences.

Script excerpt: {excerpt}

Generate only the thumbnail description."""

VISUAL_PROMPT = """Based on this video script segment, create a detailed image generation prompt for Flux/Midjourney/DALL-E.

Script segment: {segment}

Generate a concise but descriptive prompt (1-2 sentences) that:
- Captures the key visual elements
- Specifies style (photorealistic, artistic, etc.)
- Includes lighting and composition details
- Is optimized for AI image generation

Generate only the image prompt, nothing else."""

_TAG_SPLIT = re.compile(r"[,;\n]")


def build_news_digest(items: List[NewsItem]) -> str:
    return "".join(
        f"{i}. {item.title}\n   {item.summary}\n\n" for i, item in enumerate(items, start=1)
    )


def parse_tags(text: str) -> List[str]:
    return [tag.strip() for tag in _TAG_SPLIT.split(text) if tag.strip()]


def render_template(template_text: str, values: Dict[str, str]) -> str:
    """Substitute {{PLACEHOLDER}} tokens verbatim"""
    rendered = template_text
    for key, value in values.items():
        rendered = rendered.replace("{{" + key + "}}", value)
    return rendered


class StageRunner:
    """Runs individual pipeline stages against the external collaborators"""

    def __init__(
        self,
        text_provider: TextGenerationProvider,
        news_source: NewsSource,
        speech: SpeechSynthesizer,
        assembler: MediaAssembler,
        db: Database,
        retry: RetryExecutor,
        events: Optional[EventLogger] = None,
        news_count: int = 5,
        default_topic: str = "General",
    ):
        self.text = text_provider
        self.news = news_source
        self.speech = speech
        self.assembler = assembler
        self.db = db
        self.retry = retry
        self.events = events
        self.news_count = news_count
        self.default_topic = default_topic
        self.log = logging.getLogger("tube_orchestrator.stages")

    async def _call(self, stage: Stage, label: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking collaborator call in a thread under the retry policy"""
        return await self.retry.execute(
            stage.value, lambda: asyncio.to_thread(fn, *args, **kwargs), label=label
        )

    async def _generate(self, stage: Stage, label: str, prompt: str, temperature: float, max_tokens: int) -> str:
        text = await self._call(stage, label, self.text.generate, prompt, temperature, max_tokens)
        return (text or "").strip()

    def checkpoint(self, ctx: JobContext, checkpoint) -> None:
        """Record a display name and progress on the job and persist it"""
        stage_name, progress = checkpoint
        ctx.job.advance(stage_name, progress)
        self.db.update_job(ctx.job)
        self.log.info(f"[stage] Job {ctx.job.id} progress: {stage_name} - {ctx.job.progress}%")

    def _topic(self, ctx: JobContext) -> str:
        niche = ctx.channel.niche
        return niche.name if niche and niche.name else self.default_topic

    # ---------------------------------------------------------------- research

    async def run_research(self, ctx: JobContext) -> None:
        """Fetch news for the channel's niche and fill in missing summaries"""
        self.checkpoint(ctx, RESEARCH_CHECKPOINT)
        topic = self._topic(ctx)
        self.log.info(f"[stage:research] Job {ctx.job.id}: fetching {self.news_count} items for '{topic}'")

        items = await self._call(Stage.RESEARCH, "fetch", self.news.fetch, topic, self.news_count)
        if not items:
            raise MissingPrerequisiteError(ContextKey.NEWS_ITEMS.value, Stage.RESEARCH.value)

        items = list(items)
        for index, item in enumerate(items):
            if item.title and not item.summary.strip():
                item.summary = await self._generate(
                    Stage.RESEARCH,
                    f"enrich[{index}]",
                    ENRICH_PROMPT.format(title=item.title),
                    temperature=0.5,
                    max_tokens=150,
                )

        ctx.set(ContextKey.NEWS_ITEMS, items)
        self.log.info(f"[stage:research] Job {ctx.job.id}: {len(items)} news items ready")

    # ------------------------------------------------------------------ script

    def build_script_prompt(self, ctx: JobContext, items: List[NewsItem]) -> str:
        channel = ctx.channel
        niche = channel.niche
        news_data = build_news_digest(items)
        tone = channel.tone or DEFAULT_TONE

        template = niche.template_for("Script") if niche else None
        if template is not None:
            return render_template(
                template.template_text,
                {
                    "NEWS_DATA": news_data,
                    "TOPIC": niche.name if niche else "",
                    "CHANNEL_NAME": channel.name,
                    "TONE": tone,
                },
            )

        return FALLBACK_SCRIPT_PROMPT.format(
            topic=niche.name if niche else "news",
            channel_name=channel.name,
            tone_title=tone[:1].upper() + tone[1:],
            news_data=news_data,
        )

    async def run_script(self, ctx: JobContext) -> None:
        """Write the narration script and checkpoint it onto the job record"""
        self.checkpoint(ctx, SCRIPT_CHECKPOINT)
        items = ctx.require(ContextKey.NEWS_ITEMS, Stage.SCRIPT.value)

        prompt = self.build_script_prompt(ctx, items)
        script = await self._generate(Stage.SCRIPT, "generate", prompt, temperature=0.7, max_tokens=3000)
        if not script:
            raise PermanentProviderError("Text provider returned an empty script", self.text.name)

        ctx.set(ContextKey.SCRIPT, script)
        ctx.job.script = script
        self.db.update_job(ctx.job)
        self.log.info(f"[stage:script] Job {ctx.job.id}: script saved ({len(script)} chars)")

    # ---------------------------------------------------------------- approval

    async def run_approval_gate(self, ctx: JobContext) -> bool:
        """Suspend the job if the channel requires approval; returns True when suspended"""
        if not ctx.channel.require_approval:
            self.log.info(f"[stage:approval] Job {ctx.job.id}: approval not required")
            return False

        ctx.require(ContextKey.SCRIPT, Stage.APPROVAL.value)
        ctx.job.transition_to(JobStatus.WAITING_FOR_APPROVAL)
        self.checkpoint(ctx, APPROVAL_CHECKPOINT)
        if self.events:
            self.events.emit(
                ctx.job.id,
                JOB_SUSPENDED,
                stage=Stage.APPROVAL.value,
                message="Waiting for human approval of the script",
            )
        return True

    # ----------------------------------------------------------------- fan-out

    async def _seo_branch(self, ctx: JobContext, script: str) -> SeoMetadata:
        niche = ctx.channel.niche.name if ctx.channel.niche else "General"
        excerpt = script[:SCRIPT_EXCERPT_CHARS]
        short_excerpt = script[:SHORT_EXCERPT_CHARS]

        title = await self._generate(
            Stage.FAN_OUT, "seo.title", TITLE_PROMPT.format(excerpt=excerpt), temperature=0.8, max_tokens=100
        )
        description = await self._generate(
            Stage.FAN_OUT, "seo.description", DESCRIPTION_PROMPT.format(excerpt=excerpt), temperature=0.7, max_tokens=300
        )
        tags_text = await self._generate(
            Stage.FAN_OUT, "seo.tags", TAGS_PROMPT.format(niche=niche, excerpt=short_excerpt), temperature=0.6, max_tokens=150
        )
        thumbnail = await self._generate(
            Stage.FAN_OUT, "seo.thumbnail", THUMBNAIL_PROMPT.format(excerpt=short_excerpt), temperature=0.7, max_tokens=200
        )

        seo = SeoMetadata(
            title=title,
            description=description,
            tags=parse_tags(tags_text),
            thumbnail_suggestion=thumbnail,
        )
        self.log.info(f"[stage:fan_out] Job {ctx.job.id}: SEO title='{seo.title}', {len(seo.tags)} tags")
        return seo

    async def _visual_branch(self, ctx: JobContext, script: str) -> List[VisualPrompt]:
        segments = segment_script(script)
        prompts = []
        for number, segment in enumerate(segments, start=1):
            image_prompt = await self._generate(
                Stage.FAN_OUT,
                f"visual[{number}]",
                VISUAL_PROMPT.format(segment=segment),
                temperature=0.7,
                max_tokens=150,
            )
            prompts.append(
                VisualPrompt(
                    sequence_number=number,
                    segment_text=segment,
                    image_prompt=image_prompt,
                    duration_seconds=estimate_duration(segment),
                )
            )
        self.log.info(f"[stage:fan_out] Job {ctx.job.id}: {len(prompts)} visual prompts")
        return prompts

    async def _audio_branch(self, ctx: JobContext, script: str) -> AudioArtifact:
        audio = await self._call(Stage.FAN_OUT, "audio", self.speech.synthesize, script, ctx.job.id)
        self.log.info(f"[stage:fan_out] Job {ctx.job.id}: audio ready ({audio.duration_seconds:.1f}s)")
        return audio

    async def run_fan_out(self, ctx: JobContext) -> None:
        """Run SEO, visual and audio branches concurrently; wait for all before deciding"""
        ctx.job.transition_to(JobStatus.PROCESSING_FAN_OUT)
        self.checkpoint(ctx, FAN_OUT_CHECKPOINT)
        script = ctx.require(ContextKey.SCRIPT, Stage.FAN_OUT.value)

        branches = {
            "seo": self._seo_branch(ctx, script),
            "visual": self._visual_branch(ctx, script),
            "audio": self._audio_branch(ctx, script),
        }
        results = await asyncio.gather(*branches.values(), return_exceptions=True)
        outcome = dict(zip(branches.keys(), results))

        failures = {name: result for name, result in outcome.items() if isinstance(result, BaseException)}
        if failures:
            for name, exc in failures.items():
                self.log.error(f"[stage:fan_out] Job {ctx.job.id}: branch '{name}' failed: {type(exc).__name__}: {exc}")
            ctx.discard(ContextKey.SEO_METADATA, ContextKey.VISUAL_PROMPTS, ContextKey.AUDIO_ARTIFACT)
            raise FanOutJoinError(failures)

        ctx.set(ContextKey.SEO_METADATA, outcome["seo"])
        ctx.set(ContextKey.VISUAL_PROMPTS, outcome["visual"])
        ctx.set(ContextKey.AUDIO_ARTIFACT, outcome["audio"])
        self.log.info(f"[stage:fan_out] Job {ctx.job.id}: all branches completed")

    # ---------------------------------------------------------------- assembly

    async def run_assembly(self, ctx: JobContext) -> str:
        """Assemble and publish; returns the platform URL"""
        self.checkpoint(ctx, ASSEMBLY_CHECKPOINT)
        stage = Stage.ASSEMBLY.value
        script = ctx.require(ContextKey.SCRIPT, stage)
        seo = ctx.require(ContextKey.SEO_METADATA, stage)
        visual_prompts = ctx.require(ContextKey.VISUAL_PROMPTS, stage)
        audio = ctx.require(ContextKey.AUDIO_ARTIFACT, stage)

        url = await self._call(
            Stage.ASSEMBLY,
            "assemble",
            self.assembler.assemble,
            script,
            seo,
            visual_prompts,
            audio,
            ctx.channel,
            ctx.job.id,
        )
        if not url or not str(url).strip():
            raise PermanentProviderError("Media assembler returned no URL", self.assembler.name)
        self.log.info(f"[stage:assembly] Job {ctx.job.id}: published at {url}")
        return str(url).strip()
