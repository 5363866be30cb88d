"""Return photos and garment history notes

Revision ID: 20261020_return_photos
Revises: 20261019_initial
Create Date: 2026-10-20

This migration adds:
1. cloth_return_photos: condition photos recorded per returned garment
2. cloth_history.notes: free text for history rows (e.g. the condition a
   garment came back in while another booking still holds it)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261020_return_photos'
down_revision = '20261019_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('cloth_return_photos',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('cloth_id', sa.Integer(), nullable=False),
        sa.Column('rent_id', sa.Integer(), nullable=True),
        sa.Column('photo_path', sa.String(length=512), nullable=False),
        sa.Column('photo_type', sa.String(length=32), nullable=False),
        sa.Column('uploaded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['cloth_id'], ['clothes.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['rent_id'], ['rents.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cloth_return_photos', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cloth_return_photos_cloth_id'), ['cloth_id'], unique=False)
        batch_op.create_index('ix_cloth_return_photos_order_cloth', ['order_id', 'cloth_id'], unique=False)

    with op.batch_alter_table('cloth_history', schema=None) as batch_op:
        batch_op.add_column(sa.Column('notes', sa.String(length=255), nullable=True))


def downgrade():
    with op.batch_alter_table('cloth_history', schema=None) as batch_op:
        batch_op.drop_column('notes')

    op.drop_table('cloth_return_photos')
