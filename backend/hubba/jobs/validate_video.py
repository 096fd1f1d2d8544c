from __future__ import annotations
from typing import Any
from hubba.jobs.worker import run_sync
from hubba.services.media import FFprobeVideoProber
from hubba.services.storage import get_blob_store
from hubba.services.video_validation import FinalizeEvent, VideoValidationPipeline

def build_pipeline() -> VideoValidationPipeline:
    return VideoValidationPipeline(blob_store=get_blob_store(), prober=FFprobeVideoProber())

async def _run(payload: dict[str, Any]) -> str:
    event = FinalizeEvent(
        path=payload["path"],
        generation=str(payload["generation"]),
        metageneration=str(payload.get("metageneration") or "1"),
        content_type=payload.get("content_type"),
        size=payload.get("size"),
    )
    return await build_pipeline().handle(event)

def validate_video(payload: dict[str, Any]) -> str:
    # RQ entry point (sync); run the async coroutine
    return run_sync(_run, payload)
