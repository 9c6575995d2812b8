import asyncio

import pytest

from dropconvert.conversion.models import DroppedFile, JobStatus
from dropconvert.conversion.orchestrator import (
    ALREADY_CONVERTING,
    ONLY_ONE_FILE,
    STILL_LOADING,
    ConversionOrchestrator,
)
from dropconvert.errors import InvalidTransition, ValidationFailure

from conftest import FakeEngine


def _started(engine=None):
    orchestrator = ConversionOrchestrator(engine or FakeEngine())
    asyncio.run(orchestrator.start("ffmpeg", "unused"))
    return orchestrator


def _drop(orchestrator, *files, output_format=None):
    return asyncio.run(orchestrator.drop(list(files), output_format))


CLIP = DroppedFile("clip.avi", b"avi-bytes")


def test_start_discovers_formats_and_becomes_loaded():
    orchestrator = _started()
    assert orchestrator.status == JobStatus.LOADED
    assert orchestrator.engine_state.ready is True
    assert len(orchestrator.formats) == 6


def test_start_with_empty_listing_still_loads():
    orchestrator = _started(FakeEngine(listing=["nothing useful here"]))
    assert orchestrator.status == JobStatus.LOADED
    assert orchestrator.formats == ()


def test_load_failure_stays_loading_and_rejects_drops():
    orchestrator = _started(FakeEngine(fail_load=True))
    assert orchestrator.status == JobStatus.LOADING
    assert orchestrator.engine_state.ready is False
    assert "not found" in orchestrator.engine_state.error

    assert _drop(orchestrator, CLIP) is None
    assert orchestrator.status == JobStatus.LOADING
    assert orchestrator.error == STILL_LOADING


def test_unsupported_extension_keeps_loaded_and_names_extension():
    orchestrator = _started()
    assert _drop(orchestrator, DroppedFile("notes.xyz", b"x")) is None
    assert orchestrator.status == JobStatus.LOADED
    assert "xyz" in orchestrator.error
    assert orchestrator.job is None


def test_mux_only_extension_is_not_accepted_as_input():
    orchestrator = _started(FakeEngine(listing=["  E mp4   MP4 (MPEG-4 Part 14)", "DE avi  AVI"]))
    with pytest.raises(ValidationFailure):
        orchestrator.accept([DroppedFile("clip.mp4", b"x")])
    assert orchestrator.status == JobStatus.LOADED


def test_successful_conversion_goes_through_converting_to_done():
    engine = FakeEngine()
    orchestrator = _started(engine)
    seen = []
    engine.during_execute = lambda: seen.append(orchestrator.status)

    job = _drop(orchestrator, CLIP)

    assert seen == [JobStatus.CONVERTING]
    assert orchestrator.status == JobStatus.DONE
    assert job.status == JobStatus.DONE
    assert job.output_bytes == b"converted-bytes"
    assert job.progress_percent == 100.0
    assert orchestrator.error is None
    assert engine.calls == [["-i", "input", "output.mp4"]]
    assert "input" not in engine.files
    assert engine.hub.count("progress") == 0


def test_failed_conversion_records_error_and_no_output():
    engine = FakeEngine(exit_code=1)
    orchestrator = _started(engine)

    job = _drop(orchestrator, CLIP)

    assert orchestrator.status == JobStatus.FAILED
    assert job.output_bytes is None
    assert "exit code 1" in job.error_message
    assert orchestrator.error == job.error_message
    assert orchestrator.output() is None
    assert engine.hub.count("progress") == 0


def test_missing_output_file_fails_the_job():
    orchestrator = _started(FakeEngine(output=None))
    job = _drop(orchestrator, CLIP)
    assert orchestrator.status == JobStatus.FAILED
    assert "output.mp4" in job.error_message


def test_empty_output_file_fails_the_job():
    orchestrator = _started(FakeEngine(output=b""))
    _drop(orchestrator, CLIP)
    assert orchestrator.status == JobStatus.FAILED
    assert "empty" in orchestrator.error


def test_write_failure_fails_the_job():
    engine = FakeEngine(write_error="disk full")
    orchestrator = _started(engine)
    job = _drop(orchestrator, CLIP)
    assert orchestrator.status == JobStatus.FAILED
    assert job.error_message == "disk full"
    assert engine.calls == []



def test_execute_error_fails_the_job_and_cleans_up():
    engine = FakeEngine(execute_error="engine vanished")
    orchestrator = _started(engine)

    job = _drop(orchestrator, CLIP)

    assert orchestrator.status == JobStatus.FAILED
    assert job.status == JobStatus.FAILED
    assert job.error_message == "engine vanished"
    assert orchestrator.error == "engine vanished"
    assert job.output_bytes is None
    assert engine.hub.count("progress") == 0
    assert "input" not in engine.files


@pytest.mark.parametrize("exit_code", [0, 1])
def test_two_files_never_change_status(exit_code):
    orchestrator = _started(FakeEngine(exit_code=exit_code))
    states = [orchestrator.status]
    _drop(orchestrator, CLIP)
    states.append(orchestrator.status)

    for status in states:
        orchestrator.status = status
        assert _drop(orchestrator, CLIP, DroppedFile("b.avi", b"y")) is None
        assert orchestrator.status == status
        assert orchestrator.error == ONLY_ONE_FILE


def test_two_files_while_converting():
    orchestrator = _started()
    orchestrator.accept([CLIP])
    with pytest.raises(ValidationFailure):
        orchestrator.accept([CLIP, CLIP])
    assert orchestrator.status == JobStatus.CONVERTING
    assert orchestrator.error == ONLY_ONE_FILE


def test_drop_while_converting_is_rejected():
    orchestrator = _started()
    job = orchestrator.accept([CLIP])
    with pytest.raises(ValidationFailure) as excinfo:
        orchestrator.accept([DroppedFile("other.avi", b"z")])
    assert excinfo.value.message == ALREADY_CONVERTING
    assert orchestrator.job is job
    assert orchestrator.status == JobStatus.CONVERTING


def test_empty_drop_is_ignored():
    orchestrator = _started()
    assert _drop(orchestrator) is None
    assert orchestrator.status == JobStatus.LOADED
    assert orchestrator.error is None


def test_progress_samples_drive_the_job_percentage():
    engine = FakeEngine(progress=(0.1, 0.05, 0.3))
    orchestrator = _started(engine)
    seen = []
    engine.after_progress = lambda: seen.append(orchestrator.job.progress_percent)

    _drop(orchestrator, CLIP)

    assert seen == [10.0, 10.0, 30.0]


def test_new_drop_after_done_resets_progress_and_replaces_job():
    engine = FakeEngine()
    orchestrator = _started(engine)
    first = _drop(orchestrator, CLIP)
    starts = []
    engine.during_execute = lambda: starts.append(orchestrator.job.progress_percent)

    second = _drop(orchestrator, DroppedFile("again.asf", b"asf"))

    assert starts == [0.0]
    assert second is not first
    assert orchestrator.job is second
    assert orchestrator.status == JobStatus.DONE


def test_new_drop_after_failure_clears_error():
    engine = FakeEngine(exit_code=1)
    orchestrator = _started(engine)
    _drop(orchestrator, CLIP)
    assert orchestrator.error

    engine.exit_code = 0
    _drop(orchestrator, CLIP)
    assert orchestrator.status == JobStatus.DONE
    assert orchestrator.error is None


def test_selected_output_format_is_used_for_exec_read_back_and_download():
    engine = FakeEngine()
    orchestrator = _started(engine)

    _drop(orchestrator, DroppedFile("holiday.mov", b"mov"), output_format="webm")

    assert engine.calls[-1] == ["-i", "input", "output.webm"]
    assert orchestrator.output() == ("holiday.webm", "video/webm", b"converted-bytes")


def test_output_defaults_to_mp4():
    orchestrator = _started()
    _drop(orchestrator, CLIP)
    assert orchestrator.output() == ("clip.mp4", "video/mp4", b"converted-bytes")


def test_demux_only_output_format_is_rejected():
    orchestrator = _started()
    with pytest.raises(ValidationFailure) as excinfo:
        orchestrator.accept([CLIP], output_format="asf")
    assert "asf" in excinfo.value.message
    assert orchestrator.status == JobStatus.LOADED


def test_missing_default_muxer_rejects_a_valid_input():
    orchestrator = _started(FakeEngine(listing=[" D  asf   ASF", "  E webm  WebM"]))
    assert _drop(orchestrator, DroppedFile("clip.asf", b"asf")) is None
    assert orchestrator.status == JobStatus.LOADED
    assert orchestrator.error == "Unsupported output format: mp4"
    assert _drop(orchestrator, DroppedFile("clip.asf", b"asf"), output_format="webm").status == JobStatus.DONE


def test_transition_table_is_enforced():
    orchestrator = _started()
    with pytest.raises(InvalidTransition):
        orchestrator._transition(JobStatus.DONE)
    with pytest.raises(InvalidTransition):
        orchestrator._transition(JobStatus.LOADING)
    assert orchestrator.status == JobStatus.LOADED


def test_run_rejects_a_job_that_is_not_current():
    orchestrator = _started()
    stale = _drop(orchestrator, CLIP)
    with pytest.raises(InvalidTransition):
        asyncio.run(orchestrator.run(stale))


def test_view_reflects_state():
    orchestrator = _started()
    assert orchestrator.view()["status"] == "loaded"
    _drop(orchestrator, CLIP)
    view = orchestrator.view()
    assert view["status"] == "convert.done"
    assert view["progress"] == 100.0
    assert view["filename"] == "clip.avi"
    assert view["output_filename"] == "clip.mp4"
    assert view["error"] is None
