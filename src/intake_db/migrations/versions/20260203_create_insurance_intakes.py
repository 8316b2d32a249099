"""Create insurance_intakes table.

Append-only intake versions per case, unique on (case_id, version).

Revision ID: 20260203_intakes
Revises:
Create Date: 2026-02-03
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20260203_intakes"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "insurance_intakes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("case_id", sa.Text, nullable=False),
        sa.Column("schema_id", sa.Text, nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("source", sa.Text, nullable=True),
        sa.Column("created_by", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("case_id", "version", name="uq_intake_case_version"),
    )
    op.create_index("ix_intake_case_created", "insurance_intakes", ["case_id", "created_at"])
    op.create_index("ix_intake_schema_id", "insurance_intakes", ["schema_id"])


def downgrade() -> None:
    op.drop_index("ix_intake_schema_id", table_name="insurance_intakes")
    op.drop_index("ix_intake_case_created", table_name="insurance_intakes")
    op.drop_table("insurance_intakes")
