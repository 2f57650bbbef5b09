"""initial assessment schema

Revision ID: 20260301_initial
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20260301_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum('admin', 'candidate', 'supervisor', name='userrole')
question_type = sa.Enum('single_choice', 'multiple_choice', 'text', 'likert_scale', 'rating_scale', name='questiontype')
assignment_status = sa.Enum('pending', 'started', 'completed', 'expired', name='assignmentstatus')


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('terms_and_conditions', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_table(
        'candidates',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('employee_id', sa.String(), nullable=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index('ix_candidates_email', 'candidates', ['email'])
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('candidate_id', sa.Integer(), sa.ForeignKey('candidates.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_candidate_id', 'users', ['candidate_id'])

    op.create_table(
        'domains',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(), nullable=False),
    )
    op.create_table(
        'subdomains',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('domain_id', sa.Integer(), sa.ForeignKey('domains.id'), nullable=False),
    )
    op.create_index('ix_subdomains_domain_id', 'subdomains', ['domain_id'])
    op.create_table(
        'questions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('question_type', question_type, nullable=False),
        sa.Column('is_likert', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_reversed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('likert_points', sa.Integer(), nullable=True),
        sa.Column('domain_id', sa.Integer(), sa.ForeignKey('domains.id'), nullable=True),
        sa.Column('subdomain_id', sa.Integer(), sa.ForeignKey('subdomains.id'), nullable=True),
    )
    op.create_table(
        'question_options',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('text', sa.String(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default=sa.text('false')),
    )
    op.create_index('ix_question_options_question_id', 'question_options', ['question_id'])

    op.create_table(
        'tests',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('test_type', sa.String(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('instruction', sa.Text(), nullable=True),
        sa.Column('closing_remarks', sa.Text(), nullable=True),
        sa.Column('is_supervisor_feedback', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_table(
        'test_questions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('test_id', sa.Integer(), sa.ForeignKey('tests.id'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('test_id', 'question_id', name='uq_test_question'),
    )
    op.create_index('ix_test_questions_test_id', 'test_questions', ['test_id'])

    op.create_table(
        'test_assignments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('test_id', sa.Integer(), sa.ForeignKey('tests.id'), nullable=False),
        sa.Column('candidate_id', sa.Integer(), sa.ForeignKey('candidates.id'), nullable=False),
        sa.Column('assigned_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', assignment_status, nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('domain_scores', sa.JSON(), nullable=False),
        sa.Column('subdomain_scores', sa.JSON(), nullable=False),
        sa.Column('fullscreen_violations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_offscreen_time', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_page', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total_pages', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('page_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_supervisor_feedback', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('supervisor_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('supervisor_name', sa.String(), nullable=True),
        sa.Column('candidate_name', sa.String(), nullable=True),
        sa.Column('linked_assignment_id', sa.Integer(), nullable=True),
        sa.Column('linked_assignment_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index('ix_test_assignments_test_id', 'test_assignments', ['test_id'])
    op.create_index('ix_test_assignments_candidate_id', 'test_assignments', ['candidate_id'])
    op.create_index('ix_test_assignments_status', 'test_assignments', ['status'])
    op.create_index('ix_test_assignments_supervisor_id', 'test_assignments', ['supervisor_id'])
    op.create_index('ix_test_assignments_linked_assignment_id', 'test_assignments', ['linked_assignment_id'])

    op.create_table(
        'assignment_answers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('assignment_id', sa.Integer(), sa.ForeignKey('test_assignments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('response', sa.JSON(), nullable=False),
        sa.Column('score_obtained', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('answered_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('assignment_id', 'question_id', name='uq_assignment_answer_question'),
        sa.UniqueConstraint('assignment_id', 'sequence', name='uq_assignment_answer_sequence'),
    )
    op.create_index('ix_assignment_answers_assignment_id', 'assignment_answers', ['assignment_id'])

    op.create_table(
        'assignment_activity_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('assignment_id', sa.Integer(), sa.ForeignKey('test_assignments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('activity_type', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('assignment_id', 'sequence', name='uq_activity_event_sequence'),
    )
    op.create_index('ix_assignment_activity_events_assignment_id', 'assignment_activity_events', ['assignment_id'])

    op.create_table(
        'psychometric_analyses',
        sa.Column('assignment_id', sa.Integer(), sa.ForeignKey('test_assignments.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('analysis_data', sa.JSON(), nullable=False),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.Column('api_version', sa.String(), nullable=False, server_default='1.0'),
        sa.Column('request_payload', sa.JSON(), nullable=True),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('notification_type', sa.String(), nullable=False, server_default='test_assignment'),
        sa.Column('link', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('psychometric_analyses')
    op.drop_table('assignment_activity_events')
    op.drop_table('assignment_answers')
    op.drop_table('test_assignments')
    op.drop_table('test_questions')
    op.drop_table('tests')
    op.drop_table('question_options')
    op.drop_table('questions')
    op.drop_table('subdomains')
    op.drop_table('domains')
    op.drop_table('users')
    op.drop_table('candidates')
    op.drop_table('organizations')
    assignment_status.drop(op.get_bind(), checkfirst=True)
    question_type.drop(op.get_bind(), checkfirst=True)
    user_role.drop(op.get_bind(), checkfirst=True)
