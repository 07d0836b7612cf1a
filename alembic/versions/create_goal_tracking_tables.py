"""create goal tracking tables

Revision ID: create_goal_tracking_tables
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_goal_tracking_tables'
down_revision = None
branch_labels = None
depends_on = None

subscription_plan = sa.Enum('free', 'monthly', 'annual', name='subscription_plan')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String, nullable=False),
        sa.Column('hashed_password', sa.String, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False),
        sa.Column('is_superuser', sa.Boolean, nullable=False),
        sa.Column('is_verified', sa.Boolean, nullable=False),
        sa.Column('full_name', sa.String, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'goals',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('target_date', sa.Date, nullable=True),
        sa.Column('completed', sa.Boolean, nullable=False),
        sa.Column('task_summary', sa.Text, nullable=True),
        sa.Column('image_url', sa.String, nullable=True),
        sa.Column('image_loading', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_goals_user_id', 'goals', ['user_id'])
    op.create_index('ix_goals_created_at', 'goals', ['created_at'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('goal_id', sa.Uuid(), sa.ForeignKey('goals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('article_content', sa.Text, nullable=True),
        sa.Column('order_number', sa.Integer, nullable=False),
        sa.Column('completed', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_tasks_goal_id', 'tasks', ['goal_id'])

    op.create_table(
        'quizzes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('task_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('questions', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=True),
    )

    op.create_table(
        'chat_threads',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('renamed', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_chat_threads_user_id', 'chat_threads', ['user_id'])
    op.create_index('ix_chat_threads_created_at', 'chat_threads', ['created_at'])

    op.create_table(
        'chat_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('thread_id', sa.Uuid(), sa.ForeignKey('chat_threads.id'), nullable=False),
        sa.Column('sender', sa.String, nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_chat_messages_thread_id', 'chat_messages', ['thread_id'])
    op.create_index('ix_chat_messages_created_at', 'chat_messages', ['created_at'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('plan', subscription_plan, nullable=False),
        sa.Column('started_at', sa.DateTime, nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=True),
        sa.Column('active', sa.Boolean, nullable=False),
    )

    op.create_table(
        'usage_tracking',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('goals_created', sa.Integer, nullable=False),
        sa.Column('messages_sent', sa.Integer, nullable=False),
        sa.UniqueConstraint('user_id', 'date', name='uq_usage_user_date'),
    )
    op.create_index('ix_usage_tracking_user_id', 'usage_tracking', ['user_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('message', sa.String, nullable=False),
        sa.Column('type', sa.String, nullable=False),
        sa.Column('status', sa.String, nullable=False),
        sa.Column('goal_id', sa.Uuid(), sa.ForeignKey('goals.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_read', sa.Boolean, default=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('notifications')
    op.drop_index('ix_usage_tracking_user_id', table_name='usage_tracking')
    op.drop_table('usage_tracking')
    op.drop_table('subscriptions')
    subscription_plan.drop(op.get_bind(), checkfirst=True)
    op.drop_index('ix_chat_messages_created_at', table_name='chat_messages')
    op.drop_index('ix_chat_messages_thread_id', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_index('ix_chat_threads_created_at', table_name='chat_threads')
    op.drop_index('ix_chat_threads_user_id', table_name='chat_threads')
    op.drop_table('chat_threads')
    op.drop_table('quizzes')
    op.drop_index('ix_tasks_goal_id', table_name='tasks')
    op.drop_table('tasks')
    op.drop_index('ix_goals_created_at', table_name='goals')
    op.drop_index('ix_goals_user_id', table_name='goals')
    op.drop_table('goals')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
