from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "bounties",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("spot_id", sa.String(length=128), nullable=False),
        sa.Column("creator_id", sa.String(length=128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("trick_desc", sa.String(length=280), nullable=False),
        sa.Column("rules", sa.Text(), nullable=True),
        sa.Column("reward_total", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("platform_fee_bps", sa.Integer(), nullable=False),
        sa.Column("filmer_cut_bps", sa.Integer(), nullable=False),
        sa.Column("max_clip_seconds", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="OPEN"),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("min_votes", sa.Integer(), nullable=False),
        sa.Column("approve_ratio", sa.Float(), nullable=False),
        sa.Column("claim_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("locked_reason", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_bounties_spot_id", "bounties", ["spot_id"])
    op.create_index("ix_bounties_creator_id", "bounties", ["creator_id"])
    op.create_index("ix_bounties_status", "bounties", ["status"])
    op.create_index("ix_bounties_expires_at", "bounties", ["expires_at"])

    op.create_table(
        "bounty_claims",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("bounty_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("claimer_id", sa.String(length=128), nullable=False),
        sa.Column("clip_path", sa.String(length=512), nullable=False),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("filmer_id", sa.String(length=128), nullable=True),
        sa.Column("filmer_status", sa.String(length=16), nullable=True),
        sa.Column("filmer_responded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("approve_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reject_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("weighted_approve", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("weighted_reject", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_vote_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("decision_by", sa.String(length=128), nullable=True),
        sa.Column("decision_role", sa.String(length=16), nullable=True),
        sa.Column("decision_note", sa.String(length=280), nullable=True),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("platform_fee", sa.Integer(), nullable=True),
        sa.Column("net_reward", sa.Integer(), nullable=True),
        sa.Column("claimer_amount", sa.Integer(), nullable=True),
        sa.Column("filmer_amount", sa.Integer(), nullable=True),
        sa.Column("paid_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_bounty_claims_bounty_id", "bounty_claims", ["bounty_id"])
    op.create_index("ix_bounty_claims_claimer_id", "bounty_claims", ["claimer_id"])
    op.create_unique_constraint("uq_claim_one_per_claimer", "bounty_claims", ["bounty_id", "claimer_id"])

    op.create_table(
        "claim_votes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("claim_id", sa.String(length=128), sa.ForeignKey("bounty_claims.id", ondelete="CASCADE"), nullable=False),
        sa.Column("voter_id", sa.String(length=128), nullable=False),
        sa.Column("vote", sa.String(length=8), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("comment", sa.String(length=280), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_claim_votes_claim_id", "claim_votes", ["claim_id"])
    op.create_unique_constraint("uq_claim_vote_once_per_voter", "claim_votes", ["claim_id", "voter_id"])

    op.create_table(
        "ledger",
        sa.Column("id", sa.String(length=160), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("from_id", sa.String(length=128), nullable=True),
        sa.Column("to_id", sa.String(length=128), nullable=True),
        sa.Column("bounty_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("claim_id", sa.String(length=128), nullable=True),
        sa.Column("memo", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_ledger_from_id", "ledger", ["from_id"])
    op.create_index("ix_ledger_to_id", "ledger", ["to_id"])
    op.create_index("ix_ledger_bounty_id", "ledger", ["bounty_id"])

def downgrade() -> None:
    op.drop_index("ix_ledger_bounty_id", table_name="ledger")
    op.drop_index("ix_ledger_to_id", table_name="ledger")
    op.drop_index("ix_ledger_from_id", table_name="ledger")
    op.drop_table("ledger")
    op.drop_constraint("uq_claim_vote_once_per_voter", "claim_votes", type_="unique")
    op.drop_index("ix_claim_votes_claim_id", table_name="claim_votes")
    op.drop_table("claim_votes")
    op.drop_constraint("uq_claim_one_per_claimer", "bounty_claims", type_="unique")
    op.drop_index("ix_bounty_claims_claimer_id", table_name="bounty_claims")
    op.drop_index("ix_bounty_claims_bounty_id", table_name="bounty_claims")
    op.drop_table("bounty_claims")
    op.drop_index("ix_bounties_expires_at", table_name="bounties")
    op.drop_index("ix_bounties_status", table_name="bounties")
    op.drop_index("ix_bounties_creator_id", table_name="bounties")
    op.drop_index("ix_bounties_spot_id", table_name="bounties")
    op.drop_table("bounties")
