from __future__ import annotations
from pathlib import Path
from uuid import UUID
import pytest
from sqlalchemy import select
from hubba.config import settings
from hubba.db import run_in_transaction
from hubba.models.audit import AuditLog
from hubba.models.challenge import Challenge, Clip
from hubba.models.processed_video import ProcessedVideo
from hubba.services import challenges
from hubba.services.media import NoVideoStream, ProbeError, VideoMetadata
from hubba.services.storage import BlobInfo
from hubba.services.video_validation import (
    FinalizeEvent, VideoValidationPipeline, idempotency_key, parse_clip_path,
)


class FakeBlobStore:
    def __init__(self):
        self.objects: dict[str, BlobInfo] = {}
        self.downloads: list[str] = []
        self.deleted: list[str] = []
        self.fail_delete = False

    def put(self, path: str, size: int = 2_000_000, content_type: str = "video/mp4"):
        self.objects[path] = BlobInfo(path=path, size=size, content_type=content_type)

    def stat(self, path):
        return self.objects.get(path)

    def download(self, path, destination):
        self.downloads.append(path)
        Path(destination).write_bytes(b"\x00\x00\x00\x18ftypmp42")

    def delete(self, path):
        if self.fail_delete:
            raise RuntimeError("storage unavailable")
        self.deleted.append(path)
        self.objects.pop(path, None)


class FakeProber:
    def __init__(self, duration: float = 10.0, error: Exception | None = None):
        self.duration = duration
        self.error = error
        self.probed: list[Path] = []

    def probe(self, source: Path) -> VideoMetadata:
        assert source.exists()
        self.probed.append(source)
        if self.error:
            raise self.error
        return VideoMetadata(duration=self.duration, width=1080, height=1920, codec="h264")


async def _new_challenge(make_user) -> tuple[UUID, str]:
    await make_user("alice")
    await make_user("bob")
    created = await run_in_transaction(lambda s: challenges.create_challenge(
        s, "alice", opponent_id="bob", clip_ref="kickflip.mp4", duration=10.0,
    ))
    return UUID(created["challengeId"]), created["uploadPath"]


def _event(path: str, generation: str = "1", **kw) -> FinalizeEvent:
    return FinalizeEvent(path=path, generation=generation, metageneration="1", **kw)


async def _clip(session_factory, challenge_id: UUID, uid: str) -> Clip:
    async with session_factory() as session:
        return await session.get(Clip, (challenge_id, uid))


def test_parse_clip_path():
    cid = "0b5f3f7e-9a1c-4b7a-9d55-6f1d2f0b8f11"
    target = parse_clip_path(f"challenges/{cid}/alice/clip.mp4")
    assert str(target.challenge_id) == cid and target.user_id == "alice" and not target.is_draft
    assert parse_clip_path("challenges/drafts/alice/clip.mp4").is_draft
    assert parse_clip_path("challenges/not-a-uuid/alice/clip.mp4") is None
    assert parse_clip_path("challenges/alice/clip.mp4") is None
    assert parse_clip_path(f"challenges/{cid}//clip.mp4") is None


def test_idempotency_key_covers_generation():
    a = idempotency_key("challenges/x/u/c.mp4", "1", "1")
    assert a == idempotency_key("challenges/x/u/c.mp4", "1", "1")
    assert a != idempotency_key("challenges/x/u/c.mp4", "2", "1")
    assert len(a) == 64


@pytest.mark.asyncio
async def test_valid_clip_becomes_ready(session_factory, make_user):
    challenge_id, path = await _new_challenge(make_user)
    blobs, prober = FakeBlobStore(), FakeProber(duration=10.0)
    blobs.put(path)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=prober)

    outcome = await pipeline.handle(_event(path, content_type="video/mp4"))

    assert outcome == "valid"
    clip = await _clip(session_factory, challenge_id, "alice")
    assert clip.status == "ready"
    assert (clip.duration, clip.width, clip.height, clip.codec) == (10.0, 1080, 1920, "h264")
    async with session_factory() as session:
        marker = await session.get(ProcessedVideo, idempotency_key(path, "1", "1"))
        assert marker.status == "done" and marker.outcome == "valid"
        assert marker.meta_json["codec"] == "h264"
        audit = (await session.execute(select(AuditLog).where(AuditLog.action == "video_validated"))).scalars().all()
        assert len(audit) == 1 and audit[0].target_id == path
    # scratch copy is gone once the pipeline returns
    assert not prober.probed[0].exists()
    assert blobs.deleted == []


@pytest.mark.asyncio
async def test_duplicate_event_is_processed_once(session_factory, make_user):
    _, path = await _new_challenge(make_user)
    blobs, prober = FakeBlobStore(), FakeProber()
    blobs.put(path)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=prober)

    assert await pipeline.handle(_event(path)) == "valid"
    assert await pipeline.handle(_event(path)) == "duplicate"
    assert len(prober.probed) == 1
    async with session_factory() as session:
        markers = (await session.execute(select(ProcessedVideo))).scalars().all()
    assert len(markers) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("duration, expected_status, expected_reason", [
    (15.5, "ready", None),
    (15.6, "rejected", "duration_too_long"),
    (4.9, "rejected", "duration_too_short"),
    (5.0, "ready", None),
])
async def test_duration_bounds(session_factory, make_user, duration, expected_status, expected_reason):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber(duration=duration))

    await pipeline.handle(_event(path))

    clip = await _clip(session_factory, challenge_id, "alice")
    assert clip.status == expected_status
    assert clip.rejection_reason == expected_reason
    assert blobs.deleted == ([path] if expected_reason else [])


@pytest.mark.asyncio
async def test_oversized_upload_rejected_before_download(session_factory, make_user):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path, size=100 * 1024 * 1024 + 1)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    assert await pipeline.handle(_event(path)) == "rejected"
    clip = await _clip(session_factory, challenge_id, "alice")
    assert clip.rejection_reason == "file_too_large"
    assert blobs.downloads == []


@pytest.mark.asyncio
async def test_unsupported_video_type_is_invalid_format(session_factory, make_user):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path, content_type="video/x-msvideo")
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    assert await pipeline.handle(_event(path, content_type="video/x-msvideo")) == "rejected"
    assert (await _clip(session_factory, challenge_id, "alice")).rejection_reason == "invalid_format"


@pytest.mark.asyncio
@pytest.mark.parametrize("error, reason", [
    (ProbeError("moov atom not found"), "file_corrupted"),
    (NoVideoStream("audio only"), "invalid_format"),
    (RuntimeError("unexpected"), "processing_failed"),
])
async def test_probe_failures_map_to_rejection_reasons(session_factory, make_user, error, reason):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path)
    prober = FakeProber(error=error)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=prober)

    assert await pipeline.handle(_event(path)) == "rejected"
    clip = await _clip(session_factory, challenge_id, "alice")
    assert clip.status == "rejected" and clip.rejection_reason == reason
    assert not prober.probed[0].exists()


@pytest.mark.asyncio
async def test_blob_delete_failure_does_not_fail_the_outcome(session_factory, make_user):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path)
    blobs.fail_delete = True
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber(duration=30.0))

    assert await pipeline.handle(_event(path)) == "rejected"
    assert (await _clip(session_factory, challenge_id, "alice")).status == "rejected"


@pytest.mark.asyncio
async def test_content_type_parameters_are_ignored(session_factory, make_user):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path, content_type="video/mp4")
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    assert await pipeline.handle(_event(path, content_type="Video/MP4; codecs=avc1")) == "valid"
    assert (await _clip(session_factory, challenge_id, "alice")).status == "ready"


@pytest.mark.asyncio
async def test_finish_failure_records_processing_failed(session_factory, make_user, monkeypatch):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())
    finish = pipeline._finish
    calls = []

    async def flaky_finish(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("connection reset during commit")
        return await finish(*args, **kwargs)

    monkeypatch.setattr(pipeline, "_finish", flaky_finish)

    assert await pipeline.handle(_event(path)) == "rejected"
    clip = await _clip(session_factory, challenge_id, "alice")
    assert clip.status == "rejected" and clip.rejection_reason == "processing_failed"
    async with session_factory() as session:
        marker = await session.get(ProcessedVideo, idempotency_key(path, "1", "1"))
    assert marker.status == "done" and marker.rejection_reason == "processing_failed"
    assert blobs.deleted == [path]

    # redelivery sees a finished marker
    assert await pipeline.handle(_event(path)) == "duplicate"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_abandoned_claim_is_reclaimed_after_lease(session_factory, make_user, monkeypatch):
    challenge_id, path = await _new_challenge(make_user)
    blobs = FakeBlobStore()
    blobs.put(path)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    async def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    pipeline._finish = pipeline._fail = broken
    with pytest.raises(RuntimeError):
        await pipeline.handle(_event(path))
    assert (await _clip(session_factory, challenge_id, "alice")).status == "processing"

    del pipeline._finish, pipeline._fail
    # still inside the lease
    assert await pipeline.handle(_event(path)) == "duplicate"

    monkeypatch.setattr(settings, "clip_processing_lease_seconds", 0)
    assert await pipeline.handle(_event(path)) == "valid"
    assert (await _clip(session_factory, challenge_id, "alice")).status == "ready"
    async with session_factory() as session:
        marker = await session.get(ProcessedVideo, idempotency_key(path, "1", "1"))
    assert marker.status == "done" and marker.attempts == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("path, content_type", [
    ("avatars/alice/me.png", "image/png"),
    ("challenges/abc/alice/thumb.jpg", "image/jpeg"),
    ("challenges/not-a-uuid/alice/clip.mp4", "video/mp4"),
])
async def test_events_outside_the_pipeline_are_skipped(session_factory, path, content_type):
    blobs = FakeBlobStore()
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    assert await pipeline.handle(_event(path, content_type=content_type)) == "skipped"
    async with session_factory() as session:
        assert (await session.execute(select(ProcessedVideo))).scalars().all() == []


@pytest.mark.asyncio
async def test_draft_upload_is_validated_without_touching_challenges(session_factory):
    path = "challenges/drafts/alice/warmup.mp4"
    blobs = FakeBlobStore()
    blobs.put(path)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    assert await pipeline.handle(_event(path)) == "valid"
    async with session_factory() as session:
        assert (await session.execute(select(Clip))).scalars().all() == []


@pytest.mark.asyncio
async def test_upload_to_stale_path_is_ignored(session_factory, make_user):
    challenge_id, path = await _new_challenge(make_user)
    stale = f"challenges/{challenge_id}/alice/old-take.mp4"
    blobs = FakeBlobStore()
    blobs.put(stale)
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    assert await pipeline.handle(_event(stale)) == "ignored"
    clip = await _clip(session_factory, challenge_id, "alice")
    assert clip.status == "pending_upload"
    assert clip.storage_path == path


@pytest.mark.asyncio
async def test_both_ready_clips_open_voting(session_factory, make_user):
    challenge_id, creator_path = await _new_challenge(make_user)
    accepted = await run_in_transaction(lambda s: challenges.accept_challenge(
        s, "bob", challenge_id, clip_ref="heelflip.mov", duration=12.0,
    ))
    blobs = FakeBlobStore()
    blobs.put(creator_path)
    blobs.put(accepted["uploadPath"], content_type="video/quicktime")
    pipeline = VideoValidationPipeline(blob_store=blobs, prober=FakeProber())

    await pipeline.handle(_event(creator_path))
    async with session_factory() as session:
        assert (await session.get(Challenge, challenge_id)).status == "opponent_uploading"

    await pipeline.handle(_event(accepted["uploadPath"]))
    async with session_factory() as session:
        ch = await session.get(Challenge, challenge_id)
    assert ch.status == "both_ready"
    assert ch.vote_tally == {"alice": 0, "bob": 0}
    assert ch.voting_ends_at is not None


@pytest.mark.asyncio
async def test_queued_payload_runs_through_pipeline(session_factory, monkeypatch):
    from hubba.jobs import validate_video as job

    blobs = FakeBlobStore()
    blobs.put("challenges/drafts/alice/a.mp4")
    monkeypatch.setattr(job, "build_pipeline", lambda: VideoValidationPipeline(blob_store=blobs, prober=FakeProber()))

    outcome = await job._run({"path": "challenges/drafts/alice/a.mp4", "generation": 7, "metageneration": None})
    assert outcome == "valid"
    async with session_factory() as session:
        assert await session.get(ProcessedVideo, idempotency_key("challenges/drafts/alice/a.mp4", "7", "1")) is not None
