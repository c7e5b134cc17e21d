"""Initial migration - create the quiz_attempts table

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17

Creates the quiz_attempts table for the Course Quiz Attempt Service,
with the uniqueness guards on (student, lesson, attempt number) and on
the open-attempt slot, plus indexes for common query patterns.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Quiz Attempts Table ───────────────────────────────────
    op.create_table(
        'quiz_attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(64), nullable=False),
        sa.Column('course_id', sa.String(64), nullable=False),
        sa.Column('lesson_id', sa.String(64), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(20), nullable=False, server_default='in_progress'),
        sa.Column('active_key', sa.String(130), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('time_spent', sa.Integer(), nullable=True),
        sa.Column('answers', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('correct_answers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('passed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('passing_threshold', sa.Integer(), nullable=False, server_default='70'),
        sa.Column('metadata', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('in_progress', 'completed', 'abandoned')",
                           name='attempt_status'),
        sa.UniqueConstraint('student_id', 'lesson_id', 'attempt_number',
                            name='uq_quiz_attempts_student_lesson_number'),
        # NULL once the attempt is terminal, so only open attempts collide
        sa.UniqueConstraint('active_key', name='uq_quiz_attempts_active_key'),
    )

    op.create_index('ix_quiz_attempts_student_lesson', 'quiz_attempts',
                    ['student_id', 'lesson_id'])
    op.create_index('ix_quiz_attempts_student_course', 'quiz_attempts',
                    ['student_id', 'course_id'])
    op.create_index('ix_quiz_attempts_lesson_status', 'quiz_attempts',
                    ['lesson_id', 'status'])


def downgrade() -> None:
    """Drop indexes and the table."""
    op.drop_index('ix_quiz_attempts_lesson_status', table_name='quiz_attempts')
    op.drop_index('ix_quiz_attempts_student_course', table_name='quiz_attempts')
    op.drop_index('ix_quiz_attempts_student_lesson', table_name='quiz_attempts')
    op.drop_table('quiz_attempts')
