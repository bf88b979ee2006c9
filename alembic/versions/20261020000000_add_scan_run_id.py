"""Add run_id to scans and artifacts so re-runs aggregate only their own evidence.

Revision ID: 20261020000000
Revises: 20261019000000
Create Date: 2026-10-20

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261020000000"
down_revision: Union[str, None] = "20261019000000"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("scans", sa.Column("run_id", sa.String(length=32), nullable=True))
    op.add_column("artifacts", sa.Column("run_id", sa.String(length=32), nullable=True))
    op.create_index(op.f("ix_artifacts_run_id"), "artifacts", ["run_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_artifacts_run_id"), table_name="artifacts")
    op.drop_column("artifacts", "run_id")
    op.drop_column("scans", "run_id")
