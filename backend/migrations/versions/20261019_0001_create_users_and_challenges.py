from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("wallet_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reputation", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("is_banned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("roles", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("push_token", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "challenges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("creator_id", sa.String(length=128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("opponent_id", sa.String(length=128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participants", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="creator_ready"),
        sa.Column("deadline_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("voting_opened_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("voting_ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("vote_tally", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("winner_id", sa.String(length=128), nullable=True),
        sa.Column("result", sa.String(length=16), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_challenges_creator_id", "challenges", ["creator_id"])
    op.create_index("ix_challenges_opponent_id", "challenges", ["opponent_id"])
    op.create_index("ix_challenges_status", "challenges", ["status"])
    op.create_index("ix_challenges_voting_ends_at", "challenges", ["voting_ends_at"])

    op.create_table(
        "challenge_clips",
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("storage_path", sa.String(length=512), nullable=False),
        sa.Column("thumbnail_path", sa.String(length=512), nullable=True),
        sa.Column("declared_duration", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending_upload"),
        sa.Column("rejection_reason", sa.String(length=32), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("codec", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_challenge_clips_storage_path", "challenge_clips", ["storage_path"])

    op.create_table(
        "challenge_votes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("voter_id", sa.String(length=128), nullable=False),
        sa.Column("voted_for_id", sa.String(length=128), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_challenge_votes_challenge_id", "challenge_votes", ["challenge_id"])
    op.create_unique_constraint("uq_challenge_vote_once_per_voter", "challenge_votes", ["challenge_id", "voter_id"])

    op.create_table(
        "processed_videos",
        sa.Column("idempotency_key", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("path", sa.String(length=512), nullable=False),
        sa.Column("generation", sa.String(length=64), nullable=False),
        sa.Column("metageneration", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="processing"),
        sa.Column("outcome", sa.String(length=16), nullable=True),
        sa.Column("rejection_reason", sa.String(length=32), nullable=True),
        sa.Column("meta_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("claimed_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_processed_videos_path", "processed_videos", ["path"])

def downgrade() -> None:
    op.drop_index("ix_processed_videos_path", table_name="processed_videos")
    op.drop_table("processed_videos")
    op.drop_constraint("uq_challenge_vote_once_per_voter", "challenge_votes", type_="unique")
    op.drop_index("ix_challenge_votes_challenge_id", table_name="challenge_votes")
    op.drop_table("challenge_votes")
    op.drop_index("ix_challenge_clips_storage_path", table_name="challenge_clips")
    op.drop_table("challenge_clips")
    op.drop_index("ix_challenges_voting_ends_at", table_name="challenges")
    op.drop_index("ix_challenges_status", table_name="challenges")
    op.drop_index("ix_challenges_opponent_id", table_name="challenges")
    op.drop_index("ix_challenges_creator_id", table_name="challenges")
    op.drop_table("challenges")
    op.drop_table("users")
