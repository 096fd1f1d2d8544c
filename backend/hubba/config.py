from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "hubba-settlement")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "SkateHubba")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/hubba_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    s3_endpoint: str = os.getenv("S3_ENDPOINT", "http://minio:9000")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "minioadmin")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "minioadmin")
    s3_bucket_uploads: str = os.getenv("S3_BUCKET_UPLOADS", "hubba-uploads-dev")
    # Shared secret the blob store sends with finalize notifications
    storage_webhook_secret: str = os.getenv("STORAGE_WEBHOOK_SECRET", "dev-storage-secret-change-me")

    # Push delivery
    expo_push_url: str = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
    expo_access_token: str = os.getenv("EXPO_ACCESS_TOKEN", "")

    # Challenge policy
    challenge_deadline_days: int = int(os.getenv("CHALLENGE_DEADLINE_DAYS", "7"))
    voting_window_hours: int = int(os.getenv("VOTING_WINDOW_HOURS", "48"))
    challenge_vote_quorum: int = int(os.getenv("CHALLENGE_VOTE_QUORUM", "20"))

    # Clip validation policy
    clip_min_seconds: float = float(os.getenv("CLIP_MIN_SECONDS", "5.0"))
    clip_max_seconds: float = float(os.getenv("CLIP_MAX_SECONDS", "15.0"))
    clip_duration_tolerance: float = float(os.getenv("CLIP_DURATION_TOLERANCE", "0.5"))
    clip_max_bytes: int = int(os.getenv("CLIP_MAX_BYTES", str(100 * 1024 * 1024)))
    clip_allowed_types: list[str] = os.getenv("CLIP_ALLOWED_TYPES", "video/mp4,video/quicktime,video/webm").split(",")
    ffprobe_path: str = os.getenv("FFPROBE_PATH", "ffprobe")
    # an unfinished validation claim older than this is handed to the next delivery
    clip_processing_lease_seconds: int = int(os.getenv("CLIP_PROCESSING_LEASE_SECONDS", "900"))

    # Bounty policy (integer credits, basis points)
    bounty_min_reward: int = int(os.getenv("BOUNTY_MIN_REWARD", "500"))
    bounty_currency: str = os.getenv("BOUNTY_CURRENCY", "HUBBA_CREDIT")
    platform_fee_bps: int = int(os.getenv("PLATFORM_FEE_BPS", "1000"))
    filmer_cut_bps: int = int(os.getenv("FILMER_CUT_BPS", "2000"))
    expiry_refund_bps: int = int(os.getenv("EXPIRY_REFUND_BPS", "8000"))
    bounty_min_votes: int = int(os.getenv("BOUNTY_MIN_VOTES", "5"))
    bounty_approve_ratio: float = float(os.getenv("BOUNTY_APPROVE_RATIO", "0.6"))
    bounty_max_clip_seconds: int = int(os.getenv("BOUNTY_MAX_CLIP_SECONDS", "20"))

    # Reputation
    reputation_baseline: int = int(os.getenv("REPUTATION_BASELINE", "50"))
    reputation_min_to_vote: int = int(os.getenv("REPUTATION_MIN_TO_VOTE", "30"))
    reputation_approved_bonus: int = int(os.getenv("REPUTATION_APPROVED_BONUS", "5"))
    reputation_rejected_penalty: int = int(os.getenv("REPUTATION_REJECTED_PENALTY", "10"))
    reputation_abuse_penalty: int = int(os.getenv("REPUTATION_ABUSE_PENALTY", "50"))

    # Rate-limit counters untouched for this long are garbage
    rate_limit_retention_days: int = int(os.getenv("RATE_LIMIT_RETENTION_DAYS", "7"))

settings = Settings()
