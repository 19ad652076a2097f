"""Tests for timeline mutation requests."""

import logging
import random

import pytest

from conftest import build_timeline
from timeline_editor.errors import ValidationError
from timeline_editor.models.project import OVERLAY_TRACK
from timeline_editor.models.requests import (
    OVERLAY_TYPES,
    MutationRequest,
    apply_mutation_requests,
    place_overlay,
    resolve_targets,
)


def request(name, **arguments):
    return {"name": name, "arguments": arguments}


class TestPlaceOverlay:

    @pytest.mark.parametrize("overlay_type", OVERLAY_TYPES)
    def test_ranges(self, overlay_type):
        rng = random.Random(7)
        for index in range(20):
            position, size = place_overlay(overlay_type, index, rng)
            assert 5 <= position.x <= 85
            assert 5 <= position.y <= 90
            assert 15 <= size.width <= 25
            assert size.width == size.height

    def test_vertical_bands(self):
        rng = random.Random(1)
        for _ in range(20):
            assert place_overlay("ghost", 0, rng)[0].y <= 30
            assert place_overlay("tombstone", 0, rng)[0].y >= 70
            assert 30 <= place_overlay("monster", 0, rng)[0].y <= 70

    def test_deterministic_with_seed(self):
        assert place_overlay("ghost", 2, random.Random(3)) == place_overlay("ghost", 2, random.Random(3))


class TestResolveTargets:

    def test_targets(self):
        timeline = build_timeline(main=[3.0, 4.0], overlay=[2.0])
        assert [c.id for c in resolve_targets(timeline, "all")] == ["m0", "m1", "o0"]
        assert [c.id for c in resolve_targets(timeline, "track1")] == ["o0"]
        assert [c.id for c in resolve_targets(timeline, "first")] == ["m0"]
        assert [c.id for c in resolve_targets(timeline, "focused", "m1")] == ["m1"]
        assert [c.id for c in resolve_targets(timeline, "focused", "gone")] == ["m0"]
        assert [c.id for c in resolve_targets(timeline, "o0")] == ["o0"]

    def test_empty_track1(self):
        timeline = build_timeline(main=[3.0])
        with pytest.raises(ValidationError):
            resolve_targets(timeline, "track1")

    def test_unknown_id(self):
        with pytest.raises(ValidationError):
            resolve_targets(build_timeline(main=[3.0]), "nope")


class TestApplyMutationRequests:

    def test_filters_and_mute(self):
        timeline = build_timeline(main=[3.0, 4.0], overlay=[2.0])
        result = apply_mutation_requests(timeline, [
            request("applyFilterToClip", clipId="all", filter="sepia"),
            request("applyBlackAndWhiteToTrack1", enable=True),
            request("setMute", clipId="m1", muted=True),
        ])
        assert [c.filter for c in result.main] == ["sepia", "sepia"]
        assert result.get_clip_by_id("o0").filter == "grayscale"
        assert result.get_clip_by_id("m1").muted

        cleared = apply_mutation_requests(result, [request("applyBlackAndWhiteToTrack1", enable=False)])
        assert cleared.get_clip_by_id("o0").filter is None

    def test_layout_requests(self):
        timeline = build_timeline(main=[10.0, 4.0])
        result = apply_mutation_requests(timeline, [
            request("trimClip", clipId="m0", inTime=2.0, outTime=8.0),
            request("splitClipAtTime", clipId="m0", timestamp=3.0),
            request("reorderClip", clipId="m1", index=0),
            request("insertClip", sourceRef={"path": "/media/x.mp4", "duration": 2.0}, track=OVERLAY_TRACK),
        ])
        assert [c.duration for c in result.main] == [4.0, 3.0, 3.0]
        assert len(result.overlay) == 1
        result.check_invariants()

    def test_delete_first(self):
        timeline = build_timeline(main=[3.0, 4.0])
        result = apply_mutation_requests(timeline, [request("deleteClip")])
        assert [c.id for c in result.main] == ["m1"]

    def test_batch_is_atomic(self):
        timeline = build_timeline(main=[3.0])
        with pytest.raises(ValidationError, match="Request 1"):
            apply_mutation_requests(timeline, [
                request("applyFilterToClip", clipId="m0", filter="sepia"),
                request("trimClip", clipId="missing", inTime=1.0),
            ])
        assert timeline.get_clip_by_id("m0").filter is None

    def test_bad_reorder_index_names_request(self):
        timeline = build_timeline(main=[3.0, 4.0])
        with pytest.raises(ValidationError, match="Request 1"):
            apply_mutation_requests(timeline, [
                request("setMute", clipId="m0"),
                request("reorderClip", clipId="m1", index=float("nan")),
            ])

    def test_malformed_request(self):
        with pytest.raises(ValidationError, match="Request 0 is malformed"):
            apply_mutation_requests(build_timeline(main=[3.0]), [{"arguments": {}}])

    def test_unknown_request(self):
        with pytest.raises(ValidationError, match="Unknown request"):
            apply_mutation_requests(build_timeline(main=[3.0]), [request("makeItPop")])

    def test_accepts_request_objects(self):
        timeline = build_timeline(main=[3.0])
        result = apply_mutation_requests(timeline, [MutationRequest("setMute", {"clipId": "first"})])
        assert result.get_clip_by_id("m0").muted


class TestAddOverlays:

    def test_adds_first_overlay_only(self):
        timeline = build_timeline(main=[3.0, 4.0])
        result = apply_mutation_requests(
            timeline,
            [request("addOverlaysToClip", clipId="m1", overlays=[
                {"imageRef": "/img/ghost.png", "type": "ghost"},
                {"imageRef": "/img/bat.png"},
            ])],
            rng=random.Random(0)
        )
        overlays = result.get_clip_by_id("m1").overlays
        assert len(overlays) == 1
        assert overlays[0].image_ref == "/img/ghost.png"
        assert overlays[0].opacity == 0.5
        assert overlays[0].position.y <= 30

    def test_overlay_track_target_falls_back_to_main(self, caplog):
        timeline = build_timeline(main=[3.0], overlay=[2.0])
        with caplog.at_level(logging.WARNING):
            result = apply_mutation_requests(timeline, [
                request("addOverlaysToClip", clipId="o0", overlays=[{"filePath": "/img/grave.png", "tags": ["grave"]}]),
            ])
        assert result.get_clip_by_id("o0").overlays == ()
        overlay = result.get_clip_by_id("m0").overlays[0]
        assert overlay.image_ref == "/img/grave.png"
        assert overlay.position.y >= 70
        assert "not on main track" in caplog.text

    def test_appends_to_existing(self):
        timeline = build_timeline(main=[3.0])
        add = request("addOverlaysToClip", overlays=[{"imageRef": "/img/a.png"}])
        result = apply_mutation_requests(timeline, [add, add])
        overlays = result.get_clip_by_id("m0").overlays
        assert len(overlays) == 2
        assert overlays[0].id != overlays[1].id

    def test_missing_image(self):
        with pytest.raises(ValidationError, match="Failed to add any overlays"):
            apply_mutation_requests(build_timeline(main=[3.0]), [
                request("addOverlaysToClip", overlays=[{"type": "ghost"}]),
            ])

    def test_no_main_clip(self):
        with pytest.raises(ValidationError):
            apply_mutation_requests(build_timeline(overlay=[3.0]), [
                request("addOverlaysToClip", overlays=[{"imageRef": "/img/a.png"}]),
            ])
