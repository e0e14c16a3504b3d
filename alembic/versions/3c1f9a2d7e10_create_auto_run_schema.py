"""create_auto_run_schema

Revision ID: 3c1f9a2d7e10
Revises:
Create Date: 2026-10-18 09:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3c1f9a2d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    """Create the auto-run job, step, decision and drift tables."""

    # Helper for JSON type
    JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB, "postgresql")

    # 1. Jobs
    # ------------------------------------------------
    op.create_table('auto_run_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='queued', nullable=False),
        sa.Column('mode', sa.String(length=20), server_default='balanced', nullable=False),
        sa.Column('format', sa.String(length=50), nullable=True),
        sa.Column('ladder', JSON_TYPE, nullable=False),
        sa.Column('start_document', sa.String(length=50), nullable=False),
        sa.Column('current_document', sa.String(length=50), nullable=True),
        sa.Column('target_document', sa.String(length=50), nullable=False),
        sa.Column('step_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('max_total_steps', sa.Integer(), nullable=False),
        sa.Column('stage_loop_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('max_stage_loops', sa.Integer(), nullable=False),
        sa.Column('awaiting_approval', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('approval_type', sa.String(length=30), nullable=True),
        sa.Column('pending_doc_id', sa.String(length=100), nullable=True),
        sa.Column('pending_version_id', sa.String(length=100), nullable=True),
        sa.Column('pending_doc_type', sa.String(length=50), nullable=True),
        sa.Column('pending_next_doc_type', sa.String(length=50), nullable=True),
        sa.Column('approved_stages', JSON_TYPE, nullable=False),
        sa.Column('pending_decisions', JSON_TYPE, nullable=False),
        sa.Column('follow_latest', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('resume_document_id', sa.String(length=100), nullable=True),
        sa.Column('resume_version_id', sa.String(length=100), nullable=True),
        sa.Column('analysis_version_id', sa.String(length=100), nullable=True),
        sa.Column('last_ci', sa.Integer(), nullable=True),
        sa.Column('last_gp', sa.Integer(), nullable=True),
        sa.Column('last_gap', sa.Integer(), nullable=True),
        sa.Column('last_readiness', sa.Integer(), nullable=True),
        sa.Column('last_confidence', sa.Integer(), nullable=True),
        sa.Column('last_risk_flags', JSON_TYPE, nullable=False),
        sa.Column('last_recommendation', sa.String(length=20), nullable=True),
        sa.Column('last_notes', JSON_TYPE, nullable=False),
        sa.Column('last_protect', JSON_TYPE, nullable=False),
        sa.Column('force_promote_once', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('revise_requested', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('regenerate_requested', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('stale_ack_version_id', sa.String(length=100), nullable=True),
        sa.Column('stop_reason', sa.Text(), nullable=True),
        sa.Column('pause_reason', sa.String(length=30), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_auto_run_jobs_project_created', 'auto_run_jobs', ['project_id', 'created_at'])
    op.create_index('idx_auto_run_jobs_status', 'auto_run_jobs', ['status'])

    # 2. Step log
    # ------------------------------------------------
    op.create_table('auto_run_steps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Integer(), nullable=False),
        sa.Column('step_index', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=30), nullable=False),
        sa.Column('document', sa.String(length=50), nullable=True),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('ci', sa.Integer(), nullable=True),
        sa.Column('gp', sa.Integer(), nullable=True),
        sa.Column('gap', sa.Integer(), nullable=True),
        sa.Column('readiness', sa.Integer(), nullable=True),
        sa.Column('confidence', sa.Integer(), nullable=True),
        sa.Column('risk_flags', JSON_TYPE, nullable=False),
        sa.Column('output_text', sa.Text(), nullable=True),
        sa.Column('output_ref', JSON_TYPE, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['auto_run_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', 'step_index', name='uq_auto_run_steps_job_index'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('idx_auto_run_steps_action_created', 'auto_run_steps', ['action', 'created_at'])

    # 3. Decision resolutions
    # ------------------------------------------------
    op.create_table('auto_run_decision_resolutions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.String(length=100), nullable=False),
        sa.Column('note_id', sa.String(length=100), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('selected_option_id', sa.String(length=100), nullable=False),
        sa.Column('custom_text', sa.Text(), nullable=True),
        sa.Column('directive', sa.Text(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consumed_step_index', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['auto_run_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', 'version_id', 'note_id', name='uq_decision_resolution_note'),
    )
    op.create_index('idx_decision_resolutions_job_consumed', 'auto_run_decision_resolutions', ['job_id', 'consumed_at'])

    # 4. Drift
    # ------------------------------------------------
    op.create_table('drift_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.String(length=100), nullable=False),
        sa.Column('document_id', sa.String(length=100), nullable=False),
        sa.Column('document_version_id', sa.String(length=100), nullable=False),
        sa.Column('doc_type', sa.String(length=50), nullable=False),
        sa.Column('ancestor_version_id', sa.String(length=100), nullable=True),
        sa.Column('drift_level', sa.String(length=10), nullable=False),
        sa.Column('drift_items', JSON_TYPE, nullable=False),
        sa.Column('inherited_values', JSON_TYPE, nullable=False),
        sa.Column('current_values', JSON_TYPE, nullable=False),
        sa.Column('acknowledged', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('resolved', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('resolution_type', sa.String(length=30), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('regeneration_scheduled', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('regeneration_ref', JSON_TYPE, nullable=True),
        sa.Column('downstream_review_required', sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_version_id'),
    )
    op.create_index('idx_drift_events_project_created', 'drift_events', ['project_id', 'created_at'])

    op.create_table('drift_baselines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.String(length=100), nullable=False),
        sa.Column('core_values', JSON_TYPE, nullable=False),
        sa.Column('source_version_id', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id'),
    )


def downgrade() -> None:
    """Drop the auto-run schema."""
    op.drop_table('drift_baselines')
    op.drop_index('idx_drift_events_project_created', table_name='drift_events')
    op.drop_table('drift_events')
    op.drop_index('idx_decision_resolutions_job_consumed', table_name='auto_run_decision_resolutions')
    op.drop_table('auto_run_decision_resolutions')
    op.drop_index('idx_auto_run_steps_action_created', table_name='auto_run_steps')
    op.drop_table('auto_run_steps')
    op.drop_index('idx_auto_run_jobs_status', table_name='auto_run_jobs')
    op.drop_index('idx_auto_run_jobs_project_created', table_name='auto_run_jobs')
    op.drop_table('auto_run_jobs')
