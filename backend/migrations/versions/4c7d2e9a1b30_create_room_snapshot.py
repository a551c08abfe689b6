"""create room_snapshot

Revision ID: 4c7d2e9a1b30
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d2e9a1b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'room_snapshot' in insp.get_table_names():
        return
    op.create_table(
        'room_snapshot',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('room_id', sa.String(length=128), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
    )
    op.create_index('ix_room_snapshot_room_id', 'room_snapshot', ['room_id'], unique=True)


def downgrade():
    op.drop_index('ix_room_snapshot_room_id', table_name='room_snapshot')
    op.drop_table('room_snapshot')
