from tube_orchestrator.models import ChannelConfig, JobEvent, JobRecord, JobStatus, Niche, PromptTemplate
from tube_orchestrator.seed import seed_database


def test_niche_with_templates_roundtrip(db):
    niche = db.create_niche(
        Niche(
            name="Science",
            description="Lab news",
            templates=[PromptTemplate(stage_type="Script", template_text="About {{TOPIC}}")],
        )
    )

    assert niche.id is not None
    assert niche.template_for("script").template_text == "About {{TOPIC}}"
    assert niche.template_for("Title") is None


def test_add_prompt_template_replaces_existing_stage(db):
    niche = db.create_niche(Niche(name="Science"))
    db.add_prompt_template(niche.id, "Script", "first")
    db.add_prompt_template(niche.id, "Script", "second")

    templates = db.get_niche(niche.id).templates
    assert [(t.stage_type, t.template_text) for t in templates] == [("Script", "second")]


def test_channel_resolves_niche(db, make_channel):
    channel = make_channel(name="Orbit", niche_name="Space", script_template="{{NEWS_DATA}}")

    loaded = db.get_channel(channel.id)
    assert loaded.niche.name == "Space"
    assert loaded.niche.template_for("Script").template_text == "{{NEWS_DATA}}"
    assert loaded.platform == "YouTube"


def test_active_channels_and_update(db, make_channel):
    live = make_channel(name="Live")
    paused = make_channel(name="Paused", is_active=False)

    assert [c.id for c in db.list_active_channels()] == [live.id]
    assert [c.id for c in db.list_channels()] == [live.id, paused.id]

    updated = db.update_channel(paused.model_copy(update={"is_active": True, "tone": "upbeat"}))
    assert updated.is_active and updated.tone == "upbeat"
    assert len(db.list_active_channels()) == 2


def test_delete_channel(db, make_channel):
    channel = make_channel()
    assert db.delete_channel(channel.id) is True
    assert db.get_channel(channel.id) is None
    assert db.delete_channel(channel.id) is False


def test_job_persists_every_field(db, make_channel):
    channel = make_channel()
    job = db.create_job(JobRecord(channel_id=channel.id))
    job.transition_to(JobStatus.PROCESSING)
    job.advance("Script Writer", 30)
    job.script = "A script"
    job.append_log("Script ready")
    db.update_job(job)

    loaded = db.get_job(job.id)
    assert loaded.status == JobStatus.PROCESSING
    assert (loaded.current_stage, loaded.progress) == ("Script Writer", 30)
    assert loaded.script == "A script"
    assert "Script ready" in loaded.log_output
    assert db.get_job(9999) is None


def test_job_listings(db, make_channel):
    first = make_channel(name="First")
    second = make_channel(name="Second")
    a = db.create_job(JobRecord(channel_id=first.id))
    b = db.create_job(JobRecord(channel_id=second.id))
    c = db.create_job(JobRecord(channel_id=first.id, status=JobStatus.FAILED))

    assert [j.id for j in db.list_recent_jobs(2)] == [c.id, b.id]
    assert [j.id for j in db.list_jobs_by_channel(first.id)] == [c.id, a.id]
    assert [j.id for j in db.list_jobs_by_status(JobStatus.PENDING)] == [a.id, b.id]


def test_events_are_returned_oldest_first(db):
    for event_type in ("job_created", "stage_started", "stage_completed"):
        db.add_event(JobEvent(job_id=1, event_type=event_type, payload={"n": 1}))
    db.add_event(JobEvent(job_id=2, event_type="job_created"))

    events = db.get_job_events(1)
    assert [e.event_type for e in events] == ["job_created", "stage_started", "stage_completed"]
    assert events[0].payload == {"n": 1}
    assert len(db.get_job_events(1, limit=2)) == 2


def test_seed_runs_once(db):
    assert seed_database(db) is True
    assert seed_database(db) is False

    assert [n.name for n in db.list_niches()] == ["Meditation", "Tech News"]
    channels = {c.name: c for c in db.list_channels()}
    assert set(channels) == {"Tech Daily", "Mindful Moments", "Tech Shorts"}
    assert channels["Mindful Moments"].require_approval is True
    assert channels["Mindful Moments"].niche.template_for("Script") is not None
    assert channels["Tech Shorts"].is_active is False
    assert channels["Tech Shorts"].platform == "TikTok"
    assert [c.name for c in db.list_active_channels()] == ["Tech Daily", "Mindful Moments"]


def test_seeded_channel_row_types(db):
    seed_database(db)
    channel = db.list_channels()[0]
    assert isinstance(channel, ChannelConfig)
    assert isinstance(channel.require_approval, bool)
