import asyncio

import pytest

from tube_orchestrator.context import ContextKey, JobContext
from tube_orchestrator.errors import FanOutJoinError, MissingPrerequisiteError
from tube_orchestrator.media import SimulatedSpeechSynthesizer
from tube_orchestrator.models import JobRecord, JobStatus, NewsItem
from tube_orchestrator.providers import MOCK_IMAGE_PROMPT, MOCK_SCRIPT, MOCK_SUMMARY, MOCK_TITLE
from tube_orchestrator.stages import (
    ENRICH_PROMPT,
    StageRunner,
    build_news_digest,
    parse_tags,
    render_template,
)

from conftest import FailingSpeech, StubNewsSource


@pytest.fixture
def make_runner(db, storage, events, retry_executor, text_provider, news_source, assembler):
    def _make(speech=None, news=None):
        return StageRunner(
            text_provider=text_provider,
            news_source=news or news_source,
            speech=speech or SimulatedSpeechSynthesizer(storage),
            assembler=assembler,
            db=db,
            retry=retry_executor,
            events=events,
        )

    return _make


def _context(db, channel, status=JobStatus.PROCESSING):
    job = db.create_job(JobRecord(channel_id=channel.id))
    job.status = status
    db.update_job(job)
    return JobContext(job, channel)


def test_news_digest_format():
    items = [NewsItem(title="First", summary="One."), NewsItem(title="Second", summary="Two.")]
    assert build_news_digest(items) == "1. First\n   One.\n\n2. Second\n   Two.\n\n"


def test_parse_tags_splits_and_trims():
    assert parse_tags("ai, robots;space\n\n  launch ,, ") == ["ai", "robots", "space", "launch"]


def test_render_template_replaces_every_token():
    rendered = render_template("{{A}} and {{A}} then {{B}} {{UNKNOWN}}", {"A": "x", "B": "y"})
    assert rendered == "x and x then y {{UNKNOWN}}"


def test_research_uses_niche_topic_and_enriches_missing_summaries(db, make_channel, make_runner, text_provider):
    news = StubNewsSource(count=2, summaries=False)
    runner = make_runner(news=news)
    channel = make_channel(niche_name="Space")
    ctx = _context(db, channel)

    asyncio.run(runner.run_research(ctx))

    assert news.calls == [("Space", 5)]
    items = ctx.get(ContextKey.NEWS_ITEMS)
    assert [item.summary for item in items] == [MOCK_SUMMARY, MOCK_SUMMARY]
    assert text_provider.calls[0] == (ENRICH_PROMPT.format(title="Headline 1"), 0.5, 150)
    assert ctx.job.current_stage == "Research Agent"
    assert ctx.job.progress == 10


def test_research_defaults_topic_to_general(db, make_channel, make_runner, news_source):
    runner = make_runner()
    channel = make_channel(niche_name=None)
    ctx = _context(db, channel)

    asyncio.run(runner.run_research(ctx))

    assert news_source.calls == [("General", 5)]
    assert len(ctx.get(ContextKey.NEWS_ITEMS)) == 3


def test_research_with_no_items_is_a_hard_failure(db, make_channel, make_runner):
    runner = make_runner(news=StubNewsSource(count=0))
    ctx = _context(db, make_channel())

    with pytest.raises(MissingPrerequisiteError) as excinfo:
        asyncio.run(runner.run_research(ctx))
    assert excinfo.value.key == "NewsItems"


def test_script_requires_news_items(db, make_channel, make_runner):
    runner = make_runner()
    ctx = _context(db, make_channel())

    with pytest.raises(MissingPrerequisiteError) as excinfo:
        asyncio.run(runner.run_script(ctx))
    assert excinfo.value.key == "NewsItems"


def test_script_uses_niche_template_and_persists_checkpoint(db, make_channel, make_runner, text_provider):
    runner = make_runner()
    channel = make_channel(
        name="Orbit",
        niche_name="Space",
        script_template="Write a script for {{CHANNEL_NAME}} on {{TOPIC}}, tone {{TONE}}:\n{{NEWS_DATA}}",
    )
    ctx = _context(db, channel)
    items = [NewsItem(title="Launch", summary="A rocket launched.")]
    ctx.set(ContextKey.NEWS_ITEMS, items)

    asyncio.run(runner.run_script(ctx))

    prompt, temperature, max_tokens = text_provider.calls[-1]
    assert prompt == (
        "Write a script for Orbit on Space, tone professional and engaging:\n"
        "1. Launch\n   A rocket launched.\n\n"
    )
    assert (temperature, max_tokens) == (0.7, 3000)
    assert ctx.get(ContextKey.SCRIPT) == MOCK_SCRIPT
    assert db.get_job(ctx.job.id).script == MOCK_SCRIPT


def test_script_fallback_prompt_without_template(db, make_channel, make_runner):
    runner = make_runner()
    channel = make_channel(name="Daily Brief", niche_name=None, tone="calm and measured")
    ctx = _context(db, channel)

    prompt = runner.build_script_prompt(ctx, [NewsItem(title="Item", summary="Sum.")])

    assert prompt.startswith("Create an engaging video script for a YouTube video about news.")
    assert "Channel: Daily Brief" in prompt
    assert "Tone: Calm and measured, suitable for text-to-speech narration" in prompt
    assert "1. Item\n   Sum." in prompt
    assert "CONCLUSION: Call to action" in prompt


def test_approval_gate_suspends_only_when_required(db, make_channel, make_runner):
    runner = make_runner()

    open_ctx = _context(db, make_channel(require_approval=False))
    assert asyncio.run(runner.run_approval_gate(open_ctx)) is False
    assert open_ctx.job.status == JobStatus.PROCESSING

    gated_ctx = _context(db, make_channel(name="Gated", require_approval=True))
    gated_ctx.set(ContextKey.SCRIPT, "A script to review")
    assert asyncio.run(runner.run_approval_gate(gated_ctx)) is True

    stored = db.get_job(gated_ctx.job.id)
    assert stored.status == JobStatus.WAITING_FOR_APPROVAL
    assert stored.current_stage == "Awaiting Human Approval"
    assert stored.progress == 40


def test_fan_out_produces_all_outputs(db, make_channel, make_runner, text_provider):
    runner = make_runner()
    ctx = _context(db, make_channel())
    ctx.set(ContextKey.SCRIPT, MOCK_SCRIPT)

    asyncio.run(runner.run_fan_out(ctx))

    seo = ctx.get(ContextKey.SEO_METADATA)
    assert seo.title == MOCK_TITLE
    assert "trending" in seo.tags and "must watch" in seo.tags
    assert seo.thumbnail_suggestion

    prompts = ctx.get(ContextKey.VISUAL_PROMPTS)
    assert [p.sequence_number for p in prompts] == list(range(1, len(prompts) + 1))
    assert all(p.image_prompt == MOCK_IMAGE_PROMPT for p in prompts)
    assert all(p.duration_seconds >= 3.0 for p in prompts)

    assert ctx.get(ContextKey.AUDIO_ARTIFACT).provider == "simulated"
    assert ctx.job.status == JobStatus.PROCESSING_FAN_OUT
    assert ctx.job.progress == 50

    settings = {(t, m) for _, t, m in text_provider.calls}
    assert {(0.8, 100), (0.7, 300), (0.6, 150), (0.7, 200), (0.7, 150)} <= settings


def test_fan_out_waits_for_all_branches_and_discards_partial_output(db, make_channel, make_runner, text_provider):
    runner = make_runner(speech=FailingSpeech())
    ctx = _context(db, make_channel())
    ctx.set(ContextKey.SCRIPT, MOCK_SCRIPT)

    with pytest.raises(FanOutJoinError) as excinfo:
        asyncio.run(runner.run_fan_out(ctx))

    assert set(excinfo.value.failures) == {"audio"}
    # Siblings ran to completion despite the audio failure
    assert any("Generate only the thumbnail description" in p for p in text_provider.prompts)
    assert any("Generate only the image prompt" in p for p in text_provider.prompts)
    assert ctx.get(ContextKey.SEO_METADATA) is None
    assert ctx.get(ContextKey.VISUAL_PROMPTS) is None
    assert ctx.get(ContextKey.SCRIPT) == MOCK_SCRIPT


def test_assembly_requires_fan_out_outputs(db, make_channel, make_runner, assembler):
    runner = make_runner()
    ctx = _context(db, make_channel())
    ctx.set(ContextKey.SCRIPT, MOCK_SCRIPT)

    with pytest.raises(MissingPrerequisiteError) as excinfo:
        asyncio.run(runner.run_assembly(ctx))
    assert excinfo.value.key == "SeoMetadata"
    assert assembler.calls == []
