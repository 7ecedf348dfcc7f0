"""audit_workflow_initial_schema

Tenants, RBAC, audit programmes/audits/teams, meetings with agenda and
attendance, audit plans, inbox (notifications + messages) and activity log.

Partial unique indexes:
    - uq_audit_single_leader: one TEAM_LEADER per audit.
    - uq_meeting_audit_type_live: one non-archived meeting per (audit, type).

Revision ID: a1c3e5f70901
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1c3e5f70901"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _tenant_fk(nullable=False):
    return sa.Column(
        "tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=nullable,
    )


def _user_fk(name, ondelete="SET NULL", nullable=True):
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def upgrade():
    # ── Tenancy & RBAC ───────────────────────────────────────────────────
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        _ts("created_at"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("email", sa.String(200), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("codename", sa.String(100), nullable=False, unique=True),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("allowed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )
    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("assigned_at"),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    # ── Audit programmes, audits, teams ──────────────────────────────────
    op.create_table(
        "audit_programs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        _ts("created_at"),
    )
    op.create_index("ix_audit_programs_tenant_id", "audit_programs", ["tenant_id"])

    op.create_table(
        "audits",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column(
            "program_id", sa.Integer(), sa.ForeignKey("audit_programs.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("audit_no", sa.String(50), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="OPEN"),
        _ts("audit_date_from"),
        _ts("audit_date_to"),
        _ts("follow_up_date_from"),
        _ts("follow_up_date_to"),
        _ts("management_review_date_from"),
        _ts("management_review_date_to"),
        _ts("general_notification_sent_at"),
        _user_fk("general_notification_sent_by"),
        _ts("management_review_invitation_sent_at"),
        _user_fk("management_review_invitation_sent_by"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("program_id", "audit_no", name="uq_audit_program_no"),
    )
    op.create_index("ix_audits_tenant_id", "audits", ["tenant_id"])
    op.create_index("ix_audits_program_id", "audits", ["program_id"])

    op.create_table(
        "audit_team_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("audit_id", sa.Integer(), sa.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="TEAM_MEMBER"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        _ts("appointed_at"),
        _ts("response_at"),
        sa.Column("decline_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("audit_id", "user_id", name="uq_audit_team_member"),
    )
    op.create_index("ix_audit_team_members_audit_id", "audit_team_members", ["audit_id"])
    op.create_index("ix_audit_team_members_user_id", "audit_team_members", ["user_id"])
    op.create_index(
        "uq_audit_single_leader",
        "audit_team_members",
        ["audit_id"],
        unique=True,
        sqlite_where=sa.text("role = 'TEAM_LEADER'"),
        postgresql_where=sa.text("role = 'TEAM_LEADER'"),
    )

    # ── Meetings ─────────────────────────────────────────────────────────
    op.create_table(
        "meetings",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("audit_id", sa.Integer(), sa.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        _ts("scheduled_at", nullable=False),
        sa.Column("venue", sa.String(300), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("start_time", sa.String(10), nullable=True),
        sa.Column("end_time", sa.String(10), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="UPCOMING"),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("started_at"),
        _ts("completed_at"),
        _ts("cancelled_at"),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        _user_fk("created_by_id"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_meetings_audit_id", "meetings", ["audit_id"])
    op.create_index("idx_meeting_tenant", "meetings", ["tenant_id"])
    op.create_index(
        "uq_meeting_audit_type_live",
        "meetings",
        ["audit_id", "type"],
        unique=True,
        sqlite_where=sa.text("archived = 0"),
        postgresql_where=sa.text("archived = false"),
    )

    op.create_table(
        "meeting_agenda_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("meeting_id", sa.Integer(), sa.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agenda_text", sa.Text(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discussed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_meeting_agenda_items_meeting_id", "meeting_agenda_items", ["meeting_id"])

    op.create_table(
        "meeting_attendances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("meeting_id", sa.Integer(), sa.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("present", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("remarks", sa.Text(), nullable=True),
        _ts("joined_at"),
        sa.UniqueConstraint("meeting_id", "user_id", name="uq_attendance_meeting_user"),
    )
    op.create_index("ix_meeting_attendances_meeting_id", "meeting_attendances", ["meeting_id"])

    op.create_table(
        "agenda_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("meeting_type", sa.String(30), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        sa.UniqueConstraint("tenant_id", "meeting_type", "name", name="uq_agenda_template_name"),
    )
    op.create_index("ix_agenda_templates_tenant_id", "agenda_templates", ["tenant_id"])

    op.create_table(
        "agenda_template_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("agenda_templates.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("agenda_text", sa.Text(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_agenda_template_items_template_id", "agenda_template_items", ["template_id"])

    # ── Audit plans ──────────────────────────────────────────────────────
    op.create_table(
        "audit_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column("audit_id", sa.Integer(), sa.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(400), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("objectives", sa.JSON(), nullable=False),
        sa.Column("scope", sa.JSON(), nullable=False),
        sa.Column("criteria", sa.JSON(), nullable=False),
        sa.Column("methods", sa.JSON(), nullable=False),
        sa.Column("timetable", sa.JSON(), nullable=False),
        _ts("planned_start_date"),
        _ts("planned_end_date"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requirements", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _user_fk("created_by_id"),
        _ts("submitted_at"),
        _user_fk("submitted_by_id"),
        _ts("approved_at"),
        _user_fk("approved_by_id"),
        _ts("rejected_at"),
        _user_fk("rejected_by_id"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_audit_plans_tenant_id", "audit_plans", ["tenant_id"])
    op.create_index("idx_audit_plan_audit_status", "audit_plans", ["audit_id", "status"])

    # ── Inbox ────────────────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        _user_fk("target_user_id", ondelete="CASCADE", nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True),
        _ts("read_at"),
        _ts("created_at"),
    )
    op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"])
    op.create_index("idx_notification_target_read", "notifications", ["target_user_id", "is_read"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        _user_fk("sender_id"),
        _user_fk("recipient_id", ondelete="CASCADE", nullable=False),
        sa.Column("subject", sa.String(300), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("category", sa.String(30), nullable=False, server_default="SYSTEM"),
        sa.Column("entity_type", sa.String(30), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True),
        _ts("read_at"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_messages_tenant_id", "messages", ["tenant_id"])
    op.create_index("idx_message_recipient_read", "messages", ["recipient_id", "is_read"])
    op.create_index("idx_message_entity", "messages", ["entity_type", "entity_id"])

    # ── Activity log ─────────────────────────────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_fk(),
        _user_fk("user_id"),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _ts("timestamp", nullable=False),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("idx_activity_entity", "activity_logs", ["entity_type", "entity_id"])
    op.create_index("idx_activity_tenant_ts", "activity_logs", ["tenant_id", "timestamp"])
    op.create_index("idx_activity_action", "activity_logs", ["action"])


def downgrade():
    for table in (
        "activity_logs",
        "messages",
        "notifications",
        "audit_plans",
        "agenda_template_items",
        "agenda_templates",
        "meeting_attendances",
        "meeting_agenda_items",
        "meetings",
        "audit_team_members",
        "audits",
        "audit_programs",
        "user_roles",
        "role_permissions",
        "permissions",
        "roles",
        "users",
        "tenants",
    ):
        op.drop_table(table)
