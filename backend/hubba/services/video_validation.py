"""
Exactly-once validation of user-uploaded battle clips.

A blob-finalize notification can be delivered more than once and to more
than one worker. The first worker to insert the `processed_videos` marker
for sha256(path|generation|metageneration) owns the event; everyone else
returns immediately. A marker still in "processing" once its lease has
run out is handed to the next delivery.
"""
from __future__ import annotations
import hashlib
import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path, PurePosixPath
from tempfile import TemporaryDirectory
from typing import Protocol
from uuid import UUID
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from hubba.config import settings
from hubba.db import record_change, run_in_transaction, snapshot, utcnow
from hubba.models.challenge import Clip
from hubba.models.processed_video import ProcessedVideo
from hubba.services import audit
from hubba.services.media import NoVideoStream, ProbeError, VideoMetadata
from hubba.services.storage import BlobInfo

log = structlog.get_logger()

REJECTION_REASONS = {
    "duration_too_long",
    "duration_too_short",
    "file_too_large",
    "invalid_format",
    "file_corrupted",
    "processing_failed",
}


class BlobReader(Protocol):
    def stat(self, path: str) -> BlobInfo | None: ...
    def download(self, path: str, destination: str) -> None: ...
    def delete(self, path: str) -> None: ...


class VideoProber(Protocol):
    def probe(self, source: Path) -> VideoMetadata: ...


@dataclass(frozen=True)
class FinalizeEvent:
    path: str
    generation: str
    metageneration: str
    content_type: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class ClipTarget:
    challenge_id: UUID | None
    user_id: str
    filename: str

    @property
    def is_draft(self) -> bool:
        return self.challenge_id is None


def parse_clip_path(path: str) -> ClipTarget | None:
    """challenges/drafts/{uid}/{file} or challenges/{challengeId}/{uid}/{file}."""
    parts = path.split("/")
    if len(parts) != 4 or parts[0] != "challenges" or not all(parts[1:]):
        return None
    if parts[1] == "drafts":
        return ClipTarget(None, parts[2], parts[3])
    try:
        challenge_id = uuid.UUID(parts[1])
    except ValueError:
        return None
    return ClipTarget(challenge_id, parts[2], parts[3])


def idempotency_key(path: str, generation: str, metageneration: str) -> str:
    return hashlib.sha256(f"{path}|{generation}|{metageneration}".encode()).hexdigest()


def check_duration(duration: float) -> str | None:
    if duration < settings.clip_min_seconds:
        return "duration_too_short"
    if duration > settings.clip_max_seconds + settings.clip_duration_tolerance:
        return "duration_too_long"
    return None


class VideoValidationPipeline:
    def __init__(
        self,
        *,
        blob_store: BlobReader,
        prober: VideoProber,
        session_factory: async_sessionmaker | None = None,
    ) -> None:
        self._blobs = blob_store
        self._prober = prober
        self._session_factory = session_factory

    async def handle(self, event: FinalizeEvent) -> str:
        """
        Returns the recorded outcome (valid, rejected, ignored), or
        "skipped" for events outside the pipeline and "duplicate" when the
        event was already claimed.
        """
        if not event.path.startswith("challenges/"):
            return "skipped"
        if event.content_type and not event.content_type.lower().startswith("video/"):
            return "skipped"
        target = parse_clip_path(event.path)
        if target is None:
            log.info("video_path_unrecognized", path=event.path)
            return "skipped"

        key = idempotency_key(event.path, event.generation, event.metageneration)
        claimed = await run_in_transaction(lambda s: self._claim(s, key, event, target), session_factory=self._session_factory)
        if not claimed:
            log.info("video_already_processed", path=event.path, key=key)
            return "duplicate"

        try:
            reason, meta = self._validate(event)
        except Exception:
            log.exception("video_validation_crashed", path=event.path)
            reason, meta = "processing_failed", None

        try:
            outcome = await run_in_transaction(
                lambda s: self._finish(s, key, event, target, reason, meta),
                session_factory=self._session_factory,
            )
        except Exception:
            log.exception("video_finish_failed", path=event.path, key=key)
            reason = "processing_failed"
            outcome = await run_in_transaction(
                lambda s: self._fail(s, key, event, target),
                session_factory=self._session_factory,
            )
        if reason is not None:
            self._delete_quietly(event.path)
        log.info("video_validated", path=event.path, outcome=outcome, reason=reason)
        return outcome

    async def _claim(self, session: AsyncSession, key: str, event: FinalizeEvent, target: ClipTarget) -> bool:
        existing = await session.get(ProcessedVideo, key, with_for_update=True)
        if existing is not None:
            lease = timedelta(seconds=settings.clip_processing_lease_seconds)
            if existing.status != "processing" or existing.claimed_at > utcnow() - lease:
                return False
            log.warning("video_claim_reclaimed", path=event.path, key=key, attempts=existing.attempts)
            existing.claimed_at = utcnow()
            existing.attempts += 1
            return True
        session.add(ProcessedVideo(
            idempotency_key=key,
            path=event.path,
            generation=str(event.generation),
            metageneration=str(event.metageneration),
            status="processing",
        ))
        await session.flush()

        if not target.is_draft:
            clip = await session.get(Clip, (target.challenge_id, target.user_id), with_for_update=True)
            if clip is not None and clip.storage_path == event.path and clip.status == "pending_upload":
                before = snapshot(clip)
                clip.status = "processing"
                await session.flush()
                record_change(session, "challenge_clips", (clip.challenge_id, clip.user_id), before, snapshot(clip))
        return True

    def _validate(self, event: FinalizeEvent) -> tuple[str | None, VideoMetadata | None]:
        info = self._blobs.stat(event.path)
        if info is None:
            return "processing_failed", None
        size = event.size if event.size is not None else info.size
        if size > settings.clip_max_bytes:
            return "file_too_large", None
        content_type = (event.content_type or info.content_type or "").split(";")[0].strip().lower()
        if content_type not in settings.clip_allowed_types:
            return "invalid_format", None

        with TemporaryDirectory() as tmpdir:
            local = Path(tmpdir) / (PurePosixPath(event.path).name or "upload.bin")
            self._blobs.download(event.path, local.as_posix())
            try:
                meta = self._prober.probe(local)
            except NoVideoStream:
                return "invalid_format", None
            except ProbeError:
                return "file_corrupted", None

        return check_duration(meta.duration), meta

    async def _finish(
        self,
        session: AsyncSession,
        key: str,
        event: FinalizeEvent,
        target: ClipTarget,
        reason: str | None,
        meta: VideoMetadata | None,
    ) -> str:
        outcome = "rejected" if reason else "valid"

        if not target.is_draft:
            clip = await session.get(Clip, (target.challenge_id, target.user_id), with_for_update=True, populate_existing=True)
            if clip is None or clip.storage_path != event.path or clip.status not in ("pending_upload", "processing"):
                outcome = "ignored"
            else:
                before = snapshot(clip)
                if reason:
                    clip.status = "rejected"
                    clip.rejection_reason = reason
                else:
                    clip.status = "ready"
                    clip.rejection_reason = None
                if meta is not None:
                    clip.duration = meta.duration
                    clip.width = meta.width
                    clip.height = meta.height
                    clip.codec = meta.codec
                await session.flush()
                record_change(session, "challenge_clips", (clip.challenge_id, clip.user_id), before, snapshot(clip))

        marker = await session.get(ProcessedVideo, key, with_for_update=True)
        marker.status = "done"
        marker.outcome = outcome
        marker.rejection_reason = reason
        marker.meta_json = meta.to_dict() if meta else {}
        marker.finished_at = utcnow()

        audit.record(
            session,
            "video_validated",
            actor_id=None,
            target_id=event.path,
            outcome=outcome,
            reason=reason,
            draft=target.is_draft,
            challengeId=str(target.challenge_id) if target.challenge_id else None,
            userId=target.user_id,
        )
        return outcome

    def _delete_quietly(self, path: str) -> None:
        try:
            self._blobs.delete(path)
        except Exception:
            log.warning("video_delete_failed", path=path, exc_info=True)

    async def _fail(self, session: AsyncSession, key: str, event: FinalizeEvent, target: ClipTarget) -> str:
        """Terminal processing_failed outcome used when _finish itself could not commit."""
        outcome = "rejected"
        if not target.is_draft:
            clip = await session.get(Clip, (target.challenge_id, target.user_id), with_for_update=True, populate_existing=True)
            if clip is None or clip.storage_path != event.path or clip.status not in ("pending_upload", "processing"):
                outcome = "ignored"
            else:
                before = snapshot(clip)
                clip.status = "rejected"
                clip.rejection_reason = "processing_failed"
                await session.flush()
                record_change(session, "challenge_clips", (clip.challenge_id, clip.user_id), before, snapshot(clip))

        marker = await session.get(ProcessedVideo, key, with_for_update=True, populate_existing=True)
        marker.status = "done"
        marker.outcome = outcome
        marker.rejection_reason = "processing_failed"
        marker.meta_json = {}
        marker.finished_at = utcnow()
        return outcome
