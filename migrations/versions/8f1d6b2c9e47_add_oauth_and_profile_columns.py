"""Add social sign-in identifiers, avatar and last login to accounts

Revision ID: 8f1d6b2c9e47
Revises: 3c9e2d41a7b0
Create Date: 2025-12-04 14:30:00.000000

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8f1d6b2c9e47"
down_revision = "3c9e2d41a7b0"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("accounts", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("avatar_url", sa.String(length=2048), nullable=True)
        )
        batch_op.add_column(sa.Column("google_id", sa.String(length=64), nullable=True))
        batch_op.add_column(sa.Column("github_id", sa.String(length=64), nullable=True))
        batch_op.add_column(sa.Column("last_login_at", sa.DateTime(), nullable=True))
        batch_op.create_unique_constraint("uq_accounts_google_id", ["google_id"])
        batch_op.create_unique_constraint("uq_accounts_github_id", ["github_id"])


def downgrade():
    with op.batch_alter_table("accounts", schema=None) as batch_op:
        batch_op.drop_constraint("uq_accounts_github_id", type_="unique")
        batch_op.drop_constraint("uq_accounts_google_id", type_="unique")
        batch_op.drop_column("last_login_at")
        batch_op.drop_column("github_id")
        batch_op.drop_column("google_id")
        batch_op.drop_column("avatar_url")
