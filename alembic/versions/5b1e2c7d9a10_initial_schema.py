"""initial schema

Revision ID: 5b1e2c7d9a10
Revises:
Create Date: 2026-10-17 09:12:04.118203
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "5b1e2c7d9a10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
    )
    op.create_table(
        "user_roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.Uuid(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("event_metadata", JSON_TYPE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "rubric_templates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", "version", name="uq_rubric_templates_name_version"),
        sa.CheckConstraint("version >= 1", name="ck_rubric_templates_version"),
    )
    op.create_table(
        "rubric_criteria",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "template_id", sa.Uuid(), sa.ForeignKey("rubric_templates.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("weight", sa.Numeric(6, 3), nullable=False),
        sa.Column("min_score", sa.Integer(), nullable=False),
        sa.Column("max_score", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("max_score >= min_score", name="ck_rubric_criteria_score_range"),
        sa.CheckConstraint("weight >= 0", name="ck_rubric_criteria_weight"),
    )
    op.create_index("ix_rubric_criteria_template_id", "rubric_criteria", ["template_id"])

    op.create_table(
        "thesis_groups",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("adviser_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("program", sa.String(120), nullable=True),
        sa.Column("term", sa.String(60), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "group_members",
        sa.Column(
            "group_id", sa.Uuid(), sa.ForeignKey("thesis_groups.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "defense_schedules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "group_id", sa.Uuid(), sa.ForeignKey("thesis_groups.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("room", sa.String(120), nullable=True),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column(
            "rubric_template_id",
            sa.Uuid(),
            sa.ForeignKey("rubric_templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_defense_schedules_group_id", "defense_schedules", ["group_id"])

    op.create_table(
        "evaluations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "schedule_id", sa.Uuid(), sa.ForeignKey("defense_schedules.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("evaluator_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("schedule_id", "evaluator_id", name="uq_evaluations_assignment"),
        sa.CheckConstraint("status IN ('pending','submitted','locked')", name="ck_evaluations_status"),
        sa.CheckConstraint("(status <> 'pending') OR (locked_at IS NULL)", name="ck_eval_ts_pending"),
        sa.CheckConstraint(
            "(status <> 'submitted') OR (submitted_at IS NOT NULL AND locked_at IS NULL)",
            name="ck_eval_ts_submitted",
        ),
        sa.CheckConstraint("(status <> 'locked') OR (locked_at IS NOT NULL)", name="ck_eval_ts_locked"),
    )

    op.create_table(
        "evaluation_scores",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "evaluation_id", sa.Uuid(), sa.ForeignKey("evaluations.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "criterion_id", sa.Uuid(), sa.ForeignKey("rubric_criteria.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("subject_type", sa.String(20), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "evaluation_id", "criterion_id", "subject_type", "subject_id",
            name="uq_eval_score_criterion_subject",
        ),
        sa.CheckConstraint("subject_type IN ('group','student')", name="ck_eval_score_subject_type"),
    )
    op.create_index(
        "ix_eval_score_evaluation_subject",
        "evaluation_scores",
        ["evaluation_id", "subject_type", "subject_id"],
    )

    op.create_table(
        "student_evaluations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "schedule_id", sa.Uuid(), sa.ForeignKey("defense_schedules.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("answers", JSON_TYPE, nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("schedule_id", "student_id", name="uq_student_evaluations_schedule_student"),
        sa.CheckConstraint(
            "status IN ('pending','submitted','locked')", name="ck_student_evaluations_status"
        ),
    )
    op.create_index("ix_student_evaluations_schedule_id", "student_evaluations", ["schedule_id"])
    op.create_index("ix_student_evaluations_student_id", "student_evaluations", ["student_id"])


def downgrade() -> None:
    op.drop_table("student_evaluations")
    op.drop_table("evaluation_scores")
    op.drop_table("evaluations")
    op.drop_table("defense_schedules")
    op.drop_table("group_members")
    op.drop_table("thesis_groups")
    op.drop_table("rubric_criteria")
    op.drop_table("rubric_templates")
    op.drop_table("audit_events")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
