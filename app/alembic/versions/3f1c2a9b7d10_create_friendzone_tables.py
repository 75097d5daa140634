"""create_friendzone_tables

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(1024), nullable=False),
        sa.Column('avatar', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_username', 'users', ['username'])
    # Usernames are unique regardless of case
    op.create_index('uq_users_username_lower', 'users', [sa.text('lower(username)')], unique=True)

    op.create_table(
        'friend_requests',
        sa.Column('id_request', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=False),
        sa.Column('receiver_id', sa.Integer(), nullable=False),
        sa.Column('user_low_id', sa.Integer(), nullable=False),
        sa.Column('user_high_id', sa.Integer(), nullable=False),
        sa.Column('is_approved', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id']),
        sa.ForeignKeyConstraint(['receiver_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id_request'),
        sa.UniqueConstraint('user_low_id', 'user_high_id', name='uq_friend_requests_pair'),
        sa.CheckConstraint('sender_id <> receiver_id', name='ck_friend_requests_not_self'),
        sa.CheckConstraint('user_low_id < user_high_id', name='ck_friend_requests_pair_order'),
    )
    op.create_index('ix_friend_requests_id_request', 'friend_requests', ['id_request'])
    op.create_index('ix_friend_requests_sender_id', 'friend_requests', ['sender_id'])
    op.create_index('ix_friend_requests_receiver_id', 'friend_requests', ['receiver_id'])

    op.create_table(
        'conversations',
        sa.Column('id_conversation', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id_1', sa.Integer(), nullable=False),
        sa.Column('user_id_2', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id_1'], ['users.id']),
        sa.ForeignKeyConstraint(['user_id_2'], ['users.id']),
        sa.PrimaryKeyConstraint('id_conversation'),
        sa.UniqueConstraint('user_id_1', 'user_id_2', name='uq_conversations_pair'),
        sa.CheckConstraint('user_id_1 < user_id_2', name='ck_conversations_pair_order'),
    )
    op.create_index('ix_conversations_id_conversation', 'conversations', ['id_conversation'])
    op.create_index('ix_conversations_user_id_1', 'conversations', ['user_id_1'])
    op.create_index('ix_conversations_user_id_2', 'conversations', ['user_id_2'])
    op.create_index('ix_conversations_created_at', 'conversations', ['created_at'])

    op.create_table(
        'messages',
        sa.Column('id_message', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id_conversation'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id_message'),
    )
    op.create_index('ix_messages_id_message', 'messages', ['id_message'])
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('ix_messages_created_at', 'messages', ['created_at'])

    op.create_table(
        'message_attachments',
        sa.Column('id_attachment', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('message_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('data', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id_message'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id_attachment'),
    )
    op.create_index('ix_message_attachments_id_attachment', 'message_attachments', ['id_attachment'])
    op.create_index('ix_message_attachments_message_id', 'message_attachments', ['message_id'])


def downgrade() -> None:
    op.drop_table('message_attachments')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('friend_requests')
    op.drop_index('uq_users_username_lower', table_name='users')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_table('users')
