"""initial_schema_sites_crawls_scans_assurance

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Create sites table
    op.create_table(
        'sites',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('root_url', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('status', sa.Enum('active', 'deleted', name='sitestatus'), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('total_scans', sa.Integer(), nullable=False),
        sa.Column('last_scanned_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'root_url', name='uq_account_site_root_url'),
    )
    op.create_index(op.f('ix_sites_id'), 'sites', ['id'], unique=False)
    op.create_index(op.f('ix_sites_account_id'), 'sites', ['account_id'], unique=False)
    op.create_index(op.f('ix_sites_root_url'), 'sites', ['root_url'], unique=False)
    op.create_index('ix_sites_root_url_last_scanned', 'sites', ['root_url', 'last_scanned_at'], unique=False)

    # Create crawls table
    op.create_table(
        'crawls',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('site_id', sa.String(), nullable=False),
        sa.Column('status', sa.Enum('queued', 'running', 'done', 'error', name='crawlstatus'), nullable=False),
        sa.Column('max_pages', sa.Integer(), nullable=False),
        sa.Column('max_depth', sa.Integer(), nullable=False),
        sa.Column('include_sitemap', sa.Boolean(), nullable=False),
        sa.Column('pages_done', sa.Integer(), nullable=False),
        sa.Column('pages_error', sa.Integer(), nullable=False),
        sa.Column('pages_skipped', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('celery_task_id', sa.String(128), nullable=True),
        sa.Column('cancel_requested_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('max_pages > 0', name='ck_crawl_max_pages_positive'),
        sa.CheckConstraint('max_depth >= 0', name='ck_crawl_max_depth_non_negative'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_crawls_id'), 'crawls', ['id'], unique=False)
    op.create_index(op.f('ix_crawls_site_id'), 'crawls', ['site_id'], unique=False)
    op.create_index(op.f('ix_crawls_status'), 'crawls', ['status'], unique=False)
    op.create_index(op.f('ix_crawls_celery_task_id'), 'crawls', ['celery_task_id'], unique=False)
    op.create_index('idx_crawls_site_status', 'crawls', ['site_id', 'status'], unique=False)

    # Create crawl_urls table
    op.create_table(
        'crawl_urls',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('crawl_id', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('depth', sa.Integer(), nullable=False),
        sa.Column('parent_url', sa.String(), nullable=True),
        sa.Column('status', sa.Enum('queued', 'running', 'done', 'error', 'skipped', name='crawlurlstatus'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('http_status', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('links_found', sa.Integer(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('depth >= 0', name='ck_crawl_url_depth_non_negative'),
        sa.ForeignKeyConstraint(['crawl_id'], ['crawls.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('crawl_id', 'url', name='uq_crawl_url_normalized'),
    )
    op.create_index(op.f('ix_crawl_urls_id'), 'crawl_urls', ['id'], unique=False)
    op.create_index(op.f('ix_crawl_urls_crawl_id'), 'crawl_urls', ['crawl_id'], unique=False)
    op.create_index(op.f('ix_crawl_urls_status'), 'crawl_urls', ['status'], unique=False)

    # Create scan_batches table
    op.create_table(
        'scan_batches',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('site_id', sa.String(), nullable=False),
        sa.Column('crawl_id', sa.String(), nullable=True),
        sa.Column('status', sa.Enum('queued', 'running', 'done', 'error', name='scanbatchstatus'), nullable=False),
        sa.Column('trigger', sa.Enum('manual', 'scheduled', 'crawl', name='scantrigger'), nullable=False),
        sa.Column('urls', sa.JSON(), nullable=False),
        sa.Column('total_pages', sa.Integer(), nullable=False),
        sa.Column('pages_done', sa.Integer(), nullable=False),
        sa.Column('pages_error', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('celery_task_id', sa.String(128), nullable=True),
        sa.Column('cancel_requested_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['crawl_id'], ['crawls.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_batches_id'), 'scan_batches', ['id'], unique=False)
    op.create_index(op.f('ix_scan_batches_site_id'), 'scan_batches', ['site_id'], unique=False)
    op.create_index(op.f('ix_scan_batches_crawl_id'), 'scan_batches', ['crawl_id'], unique=False)
    op.create_index(op.f('ix_scan_batches_status'), 'scan_batches', ['status'], unique=False)
    op.create_index(op.f('ix_scan_batches_celery_task_id'), 'scan_batches', ['celery_task_id'], unique=False)

    # Create scans table
    op.create_table(
        'scans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('site_id', sa.String(), nullable=False),
        sa.Column('batch_id', sa.String(), nullable=True),
        sa.Column('crawl_url_id', sa.String(), nullable=True),
        sa.Column('page_url', sa.String(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('pending', 'done', 'error', name='scanstatus'), nullable=False),
        sa.Column('trigger', sa.Enum('manual', 'scheduled', 'crawl', name='scantrigger', create_type=False), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('base_score', sa.Float(), nullable=True),
        sa.Column('keyboard_score', sa.Float(), nullable=True),
        sa.Column('screen_reader_score', sa.Float(), nullable=True),
        sa.Column('mobile_score', sa.Float(), nullable=True),
        sa.Column('wcag_aa_compliance', sa.Float(), nullable=True),
        sa.Column('wcag_aaa_compliance', sa.Float(), nullable=True),
        sa.Column('issues_count', sa.Integer(), nullable=True),
        sa.Column('critical_count', sa.Integer(), nullable=True),
        sa.Column('serious_count', sa.Integer(), nullable=True),
        sa.Column('moderate_count', sa.Integer(), nullable=True),
        sa.Column('minor_count', sa.Integer(), nullable=True),
        sa.Column('violations', sa.JSON(), nullable=True),
        sa.Column('violations_by_rule', sa.JSON(), nullable=True),
        sa.Column('sub_audits', sa.JSON(), nullable=True),
        sa.Column('engine_name', sa.String(), nullable=True),
        sa.Column('engine_version', sa.String(), nullable=True),
        sa.Column('previous_scan_id', sa.String(), nullable=True),
        sa.Column('score_change', sa.Float(), nullable=True),
        sa.Column('issues_fixed', sa.Integer(), nullable=True),
        sa.Column('new_issues', sa.Integer(), nullable=True),
        sa.Column('error_reason', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('score IS NULL OR (score >= 0 AND score <= 100)', name='ck_scan_score_range'),
        sa.CheckConstraint("status != 'done' OR score IS NOT NULL", name='ck_scan_done_has_score'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['batch_id'], ['scan_batches.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['crawl_url_id'], ['crawl_urls.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['previous_scan_id'], ['scans.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scans_id'), 'scans', ['id'], unique=False)
    op.create_index(op.f('ix_scans_site_id'), 'scans', ['site_id'], unique=False)
    op.create_index(op.f('ix_scans_batch_id'), 'scans', ['batch_id'], unique=False)
    op.create_index(op.f('ix_scans_page_url'), 'scans', ['page_url'], unique=False)
    op.create_index(op.f('ix_scans_status'), 'scans', ['status'], unique=False)
    op.create_index('idx_scans_site_page_created', 'scans', ['site_id', 'page_url', 'created_at'], unique=False)

    # Create assurance_domains table
    op.create_table(
        'assurance_domains',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('subscription_id', sa.String(), nullable=False),
        sa.Column('domain', sa.String(), nullable=False),
        sa.Column('site_id', sa.String(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('frequency', sa.Enum('weekly', 'biweekly', name='scanfrequency'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('time_of_day', sa.String(5), nullable=False),
        sa.Column('next_run_at', sa.DateTime(), nullable=True),
        sa.Column('last_run_at', sa.DateTime(), nullable=True),
        sa.Column('email_recipients', sa.JSON(), nullable=False),
        sa.Column('webhook_url', sa.String(), nullable=True),
        sa.Column('last_score', sa.Float(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_assurance_day_of_week'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_assurance_domains_id'), 'assurance_domains', ['id'], unique=False)
    op.create_index(op.f('ix_assurance_domains_subscription_id'), 'assurance_domains', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_assurance_domains_domain'), 'assurance_domains', ['domain'], unique=False)
    op.create_index(op.f('ix_assurance_domains_site_id'), 'assurance_domains', ['site_id'], unique=False)
    op.create_index(op.f('ix_assurance_domains_next_run_at'), 'assurance_domains', ['next_run_at'], unique=False)
    op.create_index('idx_assurance_domains_due', 'assurance_domains', ['active', 'next_run_at'], unique=False)

    # Create assurance_scans table
    op.create_table(
        'assurance_scans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('domain_id', sa.String(), nullable=False),
        sa.Column('scan_id', sa.String(), nullable=True),
        sa.Column('previous_scan_id', sa.String(), nullable=True),
        sa.Column('status', sa.Enum('completed', 'failed', name='assurancescanstatus'), nullable=False),
        sa.Column('triggered_by', sa.Enum('scheduled', 'manual', name='assurancescantrigger'), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('wcag_aa_compliance', sa.Float(), nullable=True),
        sa.Column('wcag_aaa_compliance', sa.Float(), nullable=True),
        sa.Column('issues_count', sa.Integer(), nullable=False),
        sa.Column('critical_count', sa.Integer(), nullable=False),
        sa.Column('serious_count', sa.Integer(), nullable=False),
        sa.Column('is_regression', sa.Boolean(), nullable=False),
        sa.Column('score_change', sa.Float(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['domain_id'], ['assurance_domains.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['scan_id'], ['scans.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['previous_scan_id'], ['assurance_scans.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_assurance_scans_id'), 'assurance_scans', ['id'], unique=False)
    op.create_index(op.f('ix_assurance_scans_domain_id'), 'assurance_scans', ['domain_id'], unique=False)
    op.create_index('idx_assurance_scans_domain_created', 'assurance_scans', ['domain_id', 'created_at'], unique=False)

    # Create alert_rules table
    op.create_table(
        'alert_rules',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('domain_id', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('score_drop_threshold', sa.Float(), nullable=False),
        sa.Column('new_violations_threshold', sa.Integer(), nullable=False),
        sa.Column('compliance_threshold', sa.Float(), nullable=False),
        sa.Column('severity_levels', sa.JSON(), nullable=False),
        sa.Column('cooldown_minutes', sa.Integer(), nullable=False),
        sa.Column('notify_email', sa.Boolean(), nullable=False),
        sa.Column('notify_webhook', sa.Boolean(), nullable=False),
        sa.Column('webhook_url', sa.String(), nullable=True),
        sa.Column('recipients', sa.JSON(), nullable=False),
        sa.Column('total_alerts_sent', sa.Integer(), nullable=False),
        sa.Column('last_triggered_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('cooldown_minutes >= 0', name='ck_alert_rule_cooldown'),
        sa.CheckConstraint('score_drop_threshold > 0', name='ck_alert_rule_score_drop'),
        sa.ForeignKeyConstraint(['domain_id'], ['assurance_domains.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_alert_rules_id'), 'alert_rules', ['id'], unique=False)
    op.create_index(op.f('ix_alert_rules_domain_id'), 'alert_rules', ['domain_id'], unique=False)

    # Create assurance_alerts table
    op.create_table(
        'assurance_alerts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('domain_id', sa.String(), nullable=False),
        sa.Column('assurance_scan_id', sa.String(), nullable=True),
        sa.Column('rule_id', sa.String(), nullable=True),
        sa.Column('type', sa.Enum('score_drop', 'new_critical_issues', 'compliance_drop', name='alerttype'), nullable=False),
        sa.Column('severity', sa.Enum('low', 'moderate', 'high', 'critical', name='alertseverity'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('current_score', sa.Float(), nullable=True),
        sa.Column('previous_score', sa.Float(), nullable=True),
        sa.Column('threshold', sa.Float(), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('notified_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['domain_id'], ['assurance_domains.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assurance_scan_id'], ['assurance_scans.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['rule_id'], ['alert_rules.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_assurance_alerts_id'), 'assurance_alerts', ['id'], unique=False)
    op.create_index(op.f('ix_assurance_alerts_domain_id'), 'assurance_alerts', ['domain_id'], unique=False)
    op.create_index(op.f('ix_assurance_alerts_resolved'), 'assurance_alerts', ['resolved'], unique=False)
    op.create_index(
        'idx_assurance_alerts_cooldown',
        'assurance_alerts',
        ['domain_id', 'type', 'resolved', 'created_at'],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('assurance_alerts')
    op.drop_table('alert_rules')
    op.drop_table('assurance_scans')
    op.drop_table('assurance_domains')
    op.drop_table('scans')
    op.drop_table('scan_batches')
    op.drop_table('crawl_urls')
    op.drop_table('crawls')
    op.drop_table('sites')

    for enum_name in (
        'alertseverity', 'alerttype', 'assurancescantrigger', 'assurancescanstatus', 'scanfrequency',
        'scanstatus', 'scantrigger', 'scanbatchstatus', 'crawlurlstatus', 'crawlstatus', 'sitestatus',
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
