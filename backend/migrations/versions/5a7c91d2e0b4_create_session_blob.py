"""create session_blob key-value table

Revision ID: 5a7c91d2e0b4
Revises:
Create Date: 2026-10-19 11:20:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5a7c91d2e0b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'session_blob' in set(insp.get_table_names()):
        return

    op.create_table(
        'session_blob',
        sa.Column('code', sa.String(length=16), primary_key=True),
        sa.Column('data', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
    )


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'session_blob' in set(insp.get_table_names()):
        op.drop_table('session_blob')
