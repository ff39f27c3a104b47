"""initial

Revision ID: 0001
Revises: 
Create Date: 2026-10-16 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('username', sa.String(150), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('photo_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now())
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_display_name', 'users', ['display_name'])
    op.create_table('friendships',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('friend_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'friend_id', name='uix_friend_pair'),
        sa.CheckConstraint('user_id < friend_id', name='ck_friend_pair_ordered')
    )
    op.create_index('ix_friendships_user_id', 'friendships', ['user_id'])
    op.create_index('ix_friendships_friend_id', 'friendships', ['friend_id'])
    op.create_table('friend_requests',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('from_user', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('to_user', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_low', sa.Integer, nullable=False),
        sa.Column('user_high', sa.Integer, nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    )
    op.create_index('ix_friend_requests_from_user', 'friend_requests', ['from_user'])
    op.create_index('ix_friend_requests_to_user', 'friend_requests', ['to_user'])
    op.create_index(
        'uix_friend_request_pending_pair', 'friend_requests', ['user_low', 'user_high'],
        unique=True, postgresql_where=sa.text("status = 'pending'")
    )
    op.create_table('game_invites',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('sender_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('receiver_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('session_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True)
    )
    op.create_index('ix_game_invites_sender_id', 'game_invites', ['sender_id'])
    op.create_index('ix_game_invites_receiver_id', 'game_invites', ['receiver_id'])
    op.create_index('ix_game_invites_created_at', 'game_invites', ['created_at'])
    op.create_index(
        'uix_game_invite_pending_sender', 'game_invites', ['sender_id'],
        unique=True, postgresql_where=sa.text("status = 'pending'")
    )
    op.create_table('games',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('players', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('current_turn', sa.Integer, nullable=True),
        sa.Column('state', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True)
    )

def downgrade():
    op.drop_table('games')
    op.drop_index('uix_game_invite_pending_sender', table_name='game_invites')
    op.drop_table('game_invites')
    op.drop_index('uix_friend_request_pending_pair', table_name='friend_requests')
    op.drop_table('friend_requests')
    op.drop_table('friendships')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_table('users')
