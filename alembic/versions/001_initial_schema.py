"""Initial schema with messages table

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("hash", sa.String(64), nullable=False),
        sa.Column("payload", sa.LargeBinary, nullable=False),
        sa.Column("topics", sa.String(255), nullable=True),
        sa.Column("in_progress", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("owner", sa.String(128), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime, nullable=True),
        sa.Column("requeued", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("hash"),
    )

    # Claim polling filters on in_progress and topics
    op.create_index("ix_messages_claim_poll", "messages", ["in_progress", "topics"])

    # Stale lease reclaim filters on in_progress and heartbeat age
    op.create_index("ix_messages_heartbeat", "messages", ["in_progress", "heartbeat_at"])


def downgrade() -> None:
    op.drop_index("ix_messages_heartbeat")
    op.drop_index("ix_messages_claim_poll")
    op.drop_table("messages")
