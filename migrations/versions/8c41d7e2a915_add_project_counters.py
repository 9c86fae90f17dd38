"""Add tester_count and feedback_count to projects

Revision ID: 8c41d7e2a915
Revises: 3f9a1c2b7d40
Create Date: 2026-10-20 10:03:17.552081

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "8c41d7e2a915"
down_revision = "3f9a1c2b7d40"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("projects", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("tester_count", sa.Integer(), nullable=False, server_default="0")
        )
        batch_op.add_column(
            sa.Column(
                "feedback_count", sa.Integer(), nullable=False, server_default="0"
            )
        )

    # Backfill from existing rows
    op.execute(
        """
        UPDATE projects SET
            tester_count = (
                SELECT COUNT(*) FROM project_memberships m
                WHERE m.project_id = projects.id
                  AND m.status = 'approved' AND m.role <> 'owner'
            ),
            feedback_count = (
                SELECT COUNT(*) FROM feedback f WHERE f.project_id = projects.id
            )
        """
    )


def downgrade():
    with op.batch_alter_table("projects", schema=None) as batch_op:
        batch_op.drop_column("feedback_count")
        batch_op.drop_column("tester_count")
