"""Tests for the FFmpeg execution adapter and the Qt export worker."""

from dataclasses import replace

import pytest

from conftest import (
    FakeAdapter,
    FakePopen,
    FakeProcess,
    always_exists,
    build_timeline,
)
from timeline_editor.errors import ExecutionError
from timeline_editor.export.exporter import (
    DEFAULT_OUTPUT_PATH,
    Exporter,
    ExportRequest,
    ExportWorker,
    FailureEvent,
    FFmpegExecutionAdapter,
    ProgressEvent,
    ProgressTracker,
    SuccessEvent,
    normalize_output_path,
    parse_progress_line,
    raise_for_failure,
    run_export,
)
from timeline_editor.export.ffmpeg_graph import ExportOptions, Stage, build_render_graph


def make_graph(durations=(10.0,)):
    return build_render_graph(build_timeline(main=list(durations)), ExportOptions(), 1280, 720, always_exists)


def run_adapter(process, output_path="out.mp4"):
    popen = FakePopen(process)
    adapter = FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=popen)
    return list(adapter.execute(make_graph(), output_path)), popen


class TestProgress:

    def test_parse_progress_line(self):
        assert parse_progress_line("out_time_ms=2500000\n") == 2.5
        assert parse_progress_line("out_time_us=1000000") == 1.0
        assert parse_progress_line("out_time_ms=N/A") is None
        assert parse_progress_line("frame=42") is None
        assert parse_progress_line("progress=continue") is None

    def test_tracker_is_clamped_and_monotonic(self):
        tracker = ProgressTracker(10.0)
        assert tracker.update(2.0) == 20.0
        assert tracker.update(1.0) is None
        assert tracker.update(2.0) is None
        assert tracker.update(50.0) == 100.0
        assert tracker.update(60.0) is None

    def test_tracker_without_duration(self):
        assert ProgressTracker(0.0).update(1.0) is None


class TestExecutionAdapter:

    def test_success(self):
        process = FakeProcess(stdout_lines=[
            "frame=10\n",
            "out_time_ms=2000000\n",
            "progress=continue\n",
            "out_time_ms=1000000\n",
            "out_time_ms=5000000\n",
            "out_time_ms=20000000\n",
            "progress=end\n",
        ])
        events, popen = run_adapter(process)

        assert events == [
            ProgressEvent(0.0),
            ProgressEvent(20.0),
            ProgressEvent(50.0),
            ProgressEvent(100.0),
            SuccessEvent("out.mp4"),
        ]
        cmd = popen.commands[0]
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[-1] == "out.mp4"

    def test_success_reports_completion(self):
        events, _ = run_adapter(FakeProcess(stdout_lines=["out_time_ms=4000000\n"]))
        assert events[-2:] == [ProgressEvent(100.0), SuccessEvent("out.mp4")]

    def test_exactly_one_terminal_event(self):
        for process in (FakeProcess(), FakeProcess(returncode=1, stderr_text="boom")):
            events, _ = run_adapter(process)
            terminal = [e for e in events if not isinstance(e, ProgressEvent)]
            assert len(terminal) == 1
            assert events[-1] is terminal[0]

    def test_failure_carries_stderr_tail(self):
        stderr = "noise\n" * 200 + "Invalid data found when processing input\n"
        events, _ = run_adapter(FakeProcess(returncode=1, stderr_text=stderr))

        failure = events[-1]
        assert isinstance(failure, FailureEvent)
        assert failure.message.startswith("FFmpeg error: ")
        assert failure.message.endswith("Invalid data found when processing input")
        assert len(failure.message) <= len("FFmpeg error: ") + 500

    def test_failure_without_stderr(self):
        events, _ = run_adapter(FakeProcess(returncode=3))
        assert events[-1] == FailureEvent("FFmpeg exited with code 3")

    def test_start_failure(self):
        popen = FakePopen(error=OSError("permission denied"))
        adapter = FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=popen)
        events = list(adapter.execute(make_graph(), "out.mp4"))
        assert len(events) == 1
        assert events[0].message.startswith("Failed to start FFmpeg")

    def test_output_path_gets_extension(self):
        events, popen = run_adapter(FakeProcess(), output_path="render")
        assert events[-1] == SuccessEvent("render.mp4")
        assert popen.commands[0][-1] == "render.mp4"

    def test_cancel(self):
        process = FakeProcess(stdout_lines=[
            "out_time_ms=1000000\n",
            "out_time_ms=2000000\n",
            "out_time_ms=3000000\n",
        ])
        adapter = FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=FakePopen(process))

        events = []
        for event in adapter.execute(make_graph(), "out.mp4"):
            events.append(event)
            if event == ProgressEvent(10.0):
                adapter.cancel()

        assert events[-1] == FailureEvent("Export cancelled")
        assert ProgressEvent(30.0) not in events
        assert process.terminated

    def test_abandoned_export_stops_ffmpeg(self):
        process = FakeProcess(stdout_lines=["out_time_ms=1000000\n", "out_time_ms=2000000\n"])
        adapter = FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=FakePopen(process))

        events = adapter.execute(make_graph(), "out.mp4")
        assert next(events) == ProgressEvent(0.0)
        events.close()

        assert process.terminated

    def test_finished_export_is_not_terminated(self):
        process = FakeProcess(stdout_lines=["out_time_ms=10000000\n"])
        run_adapter(process)
        assert not process.terminated

    def test_unrenderable_graph_fails(self):
        graph = replace(make_graph(), stages=(
            Stage("trim", ("0:v",), ("v0",), {"start": 0.0, "end": 1.0, "filter": "bogus"}),
        ))
        popen = FakePopen()
        adapter = FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=popen)

        events = list(adapter.execute(graph, "out.mp4"))

        assert events == [FailureEvent("Unknown filter: bogus")]
        assert popen.commands == []

    def test_no_retries(self):
        popen = FakePopen(FakeProcess(returncode=1, stderr_text="boom"))
        adapter = FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=popen)
        list(adapter.execute(make_graph(), "out.mp4"))
        assert len(popen.commands) == 1


class TestEvents:

    def test_to_dict(self):
        assert ProgressEvent(12.5).to_dict() == {"type": "progress", "percent": 12.5}
        assert SuccessEvent("a.mp4").to_dict() == {"type": "success", "outputPath": "a.mp4"}
        assert FailureEvent("bad").to_dict() == {"type": "failure", "message": "bad"}

    def test_raise_for_failure(self):
        assert raise_for_failure([ProgressEvent(0.0), SuccessEvent("a.mp4")]) == "a.mp4"
        with pytest.raises(ExecutionError, match="bad"):
            raise_for_failure([ProgressEvent(0.0), FailureEvent("bad")])
        with pytest.raises(ExecutionError):
            raise_for_failure([])


class TestExportRequest:

    def test_normalize_output_path(self):
        assert normalize_output_path(None) == DEFAULT_OUTPUT_PATH == "exported-video.mp4"
        assert normalize_output_path("clip.MP4") == "clip.MP4"
        assert normalize_output_path("clip.mov") == "clip.mov.mp4"

    def test_from_dict(self):
        timeline = build_timeline(main=[3.0], overlay=[2.0])
        request = ExportRequest.from_dict({
            "clips": [clip.to_dict() for clip in timeline.get_all_clips()],
            "outputPath": "final",
            "resolution": "720p",
            "overlayTrackVisible": False,
            "track0Muted": True,
        })
        assert request.output_path == "final.mp4"
        assert [clip.id for clip in request.clips] == ["m0", "o0"]
        assert request.options == ExportOptions(
            resolution="720p", overlay_track_visible=False, track0_muted=True
        )

    def test_defaults(self):
        request = ExportRequest.from_dict({"clips": []})
        assert request.output_path == "exported-video.mp4"
        assert request.options == ExportOptions()

    def test_run_export_rejects_before_engine(self):
        adapter = FakeAdapter([SuccessEvent("never.mp4")])
        request = ExportRequest(clips=[], options=ExportOptions(resolution="720p"))
        events = list(run_export(request, adapter, source_exists=always_exists))
        assert events == [FailureEvent("No video clips to export")]
        assert adapter.executed == []

    def test_run_export_rejects_unknown_filter(self):
        clip_data = build_timeline(main=[3.0]).main[0].to_dict()
        clip_data["filter"] = "bogus"
        request = ExportRequest.from_dict({"clips": [clip_data], "resolution": "720p"})
        popen = FakePopen()

        events = list(run_export(
            request,
            FFmpegExecutionAdapter(ffmpeg_path="ffmpeg", popen=popen),
            source_exists=always_exists
        ))

        assert len(events) == 1
        assert isinstance(events[0], FailureEvent)
        assert "bogus" in events[0].message
        assert popen.commands == []


class TestQtExport:

    def _request(self):
        return ExportRequest.from_timeline(
            build_timeline(main=[3.0]), "out.mp4", ExportOptions(resolution="720p")
        )

    def _collect(self, worker):
        received = {"progress": [], "status": [], "completed": []}
        worker.progress.connect(lambda value: received["progress"].append(value))
        worker.status.connect(lambda text: received["status"].append(text))
        worker.completed.connect(lambda ok, message: received["completed"].append((ok, message)))
        return received

    def test_worker_success(self, qt_app):
        adapter = FakeAdapter([ProgressEvent(0.0), ProgressEvent(55.0), SuccessEvent("out.mp4")])
        worker = ExportWorker(self._request(), adapter=adapter, source_exists=always_exists)
        received = self._collect(worker)

        worker.run()

        assert received["progress"] == [0.0, 0.0, 55.0]
        assert received["completed"] == [(True, "out.mp4")]
        assert received["status"][0] == "Building export graph..."
        assert received["status"][-1] == "Export complete!"

    def test_worker_failure(self, qt_app):
        adapter = FakeAdapter([ProgressEvent(0.0), FailureEvent("FFmpeg error: boom")])
        worker = ExportWorker(self._request(), adapter=adapter, source_exists=always_exists)
        received = self._collect(worker)

        worker.run()

        assert received["completed"] == [(False, "FFmpeg error: boom")]

    def test_worker_validation_failure(self, qt_app):
        adapter = FakeAdapter([SuccessEvent("never.mp4")])
        worker = ExportWorker(self._request(), adapter=adapter, source_exists=lambda source: False)
        received = self._collect(worker)

        worker.run()

        assert received["completed"][0][0] is False
        assert "Source not found" in received["completed"][0][1]
        assert adapter.executed == []

    def test_worker_cancel(self, qt_app):
        adapter = FakeAdapter([])
        worker = ExportWorker(self._request(), adapter=adapter)
        worker.cancel()
        assert adapter.cancelled

    def test_exporter_refuses_second_export(self, qt_app, monkeypatch):
        exporter = Exporter(adapter_factory=lambda: FakeAdapter([]))
        assert not exporter.is_exporting()

        monkeypatch.setattr(exporter, "is_exporting", lambda: True)
        assert exporter.export(self._request()) is False

    def test_exporter_forwards_worker_signals(self, qt_app):
        adapter = FakeAdapter([ProgressEvent(40.0), SuccessEvent("out.mp4")])
        exporter = Exporter(adapter_factory=lambda: adapter, source_exists=always_exists)
        finished = []
        exporter.finished.connect(lambda ok, message: finished.append((ok, message)))

        worker = exporter.create_worker(self._request())
        worker.run()

        assert finished == [(True, "out.mp4")]
