import pytest
from pydantic import ValidationError

from tube_orchestrator.errors import InvalidTransitionError
from tube_orchestrator.models import ChannelCreate, JobEvent, JobRecord, JobStatus


@pytest.mark.parametrize(
    "path",
    [
        [JobStatus.PROCESSING, JobStatus.PROCESSING_FAN_OUT, JobStatus.COMPLETED],
        [JobStatus.PROCESSING, JobStatus.WAITING_FOR_APPROVAL, JobStatus.PROCESSING,
         JobStatus.PROCESSING_FAN_OUT, JobStatus.COMPLETED],
        [JobStatus.PROCESSING, JobStatus.FAILED],
        [JobStatus.FAILED],
    ],
)
def test_allowed_status_paths(path):
    job = JobRecord(channel_id=1)
    for status in path:
        job.transition_to(status)
    assert job.status == path[-1]


@pytest.mark.parametrize(
    "start, target",
    [
        (JobStatus.PENDING, JobStatus.COMPLETED),
        (JobStatus.PENDING, JobStatus.WAITING_FOR_APPROVAL),
        (JobStatus.PROCESSING, JobStatus.COMPLETED),
        (JobStatus.COMPLETED, JobStatus.PROCESSING),
        (JobStatus.FAILED, JobStatus.PENDING),
        (JobStatus.WAITING_FOR_APPROVAL, JobStatus.COMPLETED),
    ],
)
def test_illegal_transitions_are_rejected(start, target):
    job = JobRecord(channel_id=1, status=start)
    with pytest.raises(InvalidTransitionError):
        job.transition_to(target)
    assert job.status == start


def test_terminal_statuses():
    assert JobRecord(channel_id=1, status=JobStatus.COMPLETED).is_terminal
    assert JobRecord(channel_id=1, status=JobStatus.FAILED).is_terminal
    assert not JobRecord(channel_id=1, status=JobStatus.WAITING_FOR_APPROVAL).is_terminal


def test_advance_never_moves_progress_backwards():
    job = JobRecord(channel_id=1)
    job.advance("Parallel Processing", 50)
    job.advance("Script Writer", 30)
    assert job.current_stage == "Script Writer"
    assert job.progress == 50


def test_progress_bounds_are_validated():
    job = JobRecord(channel_id=1)
    with pytest.raises(ValidationError):
        job.progress = 101
    with pytest.raises(ValidationError):
        JobRecord(channel_id=1, progress=-1)


def test_append_log_adds_timestamped_lines():
    job = JobRecord(channel_id=1)
    job.append_log("first")
    job.append_log("second")
    lines = job.log_output.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("[") and lines[0].endswith("] first")


def test_status_values_match_wire_names():
    assert [s.value for s in JobStatus] == [
        "Pending",
        "Processing",
        "Processing_ParallelFanOut",
        "WaitingForApproval",
        "Completed",
        "Failed",
    ]


def test_channel_create_rejects_blank_name():
    with pytest.raises(ValidationError):
        ChannelCreate(name="   ")


def test_job_event_requires_type():
    with pytest.raises(ValidationError):
        JobEvent(job_id=1, event_type=" ")
    assert JobEvent(job_id=1, event_type="x", payload=None).payload == {}
