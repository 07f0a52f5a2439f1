"""Initial settlement tables and default subscription plans

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _tenant_fk() -> sa.Column:
    return sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), nullable=False)


def upgrade() -> None:
    # Tenants
    op.create_table(
        "tenants",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("tier", sa.String(20), nullable=False, server_default="FREE"),
        sa.Column("status", sa.String(20), nullable=False, server_default="TRIAL"),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("max_teachers", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("max_users", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_classes", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("current_student_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_teacher_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_user_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enabled_features", sa.JSON(), nullable=False, server_default="[]"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_status", "tenants", ["status"])
    op.create_index("ix_tenants_subscription_ends_at", "tenants", ["subscription_ends_at"])

    # Users (mirrored from the identity service)
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    # Document sequences
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("prefix", sa.String(20), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id", "prefix", "year", name="uq_document_sequence_tenant_prefix_year"
        ),
    )

    # Audit log
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=True),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("entity_identifier", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # Fee catalog
    op.create_table(
        "billing_periods",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="false"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_periods_tenant_id", "billing_periods", ["tenant_id"])

    op.create_table(
        "scholarships",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_scholarships_percentage_range",
        ),
        sa.UniqueConstraint("tenant_id", "name", name="uq_scholarships_tenant_name"),
    )
    op.create_index("ix_scholarships_tenant_id", "scholarships", ["tenant_id"])

    op.create_table(
        "fee_templates",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("applicable_grade", sa.String(50), nullable=True),
        sa.Column(
            "billing_period_id", sa.BigInteger(), sa.ForeignKey("billing_periods.id"), nullable=True
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount > 0", name="ck_fee_templates_amount_positive"),
        sa.UniqueConstraint(
            "tenant_id",
            "name",
            "billing_period_id",
            "applicable_grade",
            name="uq_fee_templates_tenant_name_period_grade",
        ),
    )
    op.create_index("ix_fee_templates_tenant_id", "fee_templates", ["tenant_id"])
    op.create_index("ix_fee_templates_billing_period_id", "fee_templates", ["billing_period_id"])

    # Students (records are owned by the school records service)
    op.create_table(
        "school_classes",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("grade_level", sa.String(50), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_school_classes_tenant_id", "school_classes", ["tenant_id"])

    op.create_table(
        "students",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("class_id", sa.BigInteger(), sa.ForeignKey("school_classes.id"), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("scholarship_id", sa.BigInteger(), sa.ForeignKey("scholarships.id"), nullable=True),
        sa.Column("parent_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("guardian_name", sa.String(200), nullable=True),
        sa.Column("guardian_email", sa.String(255), nullable=True),
        sa.Column("guardian_phone", sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_students_tenant_id", "students", ["tenant_id"])
    op.create_index("ix_students_class_id", "students", ["class_id"])
    op.create_index("ix_students_scholarship_id", "students", ["scholarship_id"])
    op.create_index("ix_students_parent_id", "students", ["parent_id"])

    op.create_table(
        "fee_obligations",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("student_id", sa.BigInteger(), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("fee_template_id", sa.BigInteger(), sa.ForeignKey("fee_templates.id"), nullable=False),
        sa.Column("amount_due", sa.Numeric(15, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("due_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "student_id", "fee_template_id", name="uq_fee_obligations_student_template"
        ),
    )
    op.create_index("ix_fee_obligations_tenant_id", "fee_obligations", ["tenant_id"])
    op.create_index("ix_fee_obligations_student_id", "fee_obligations", ["student_id"])
    op.create_index("ix_fee_obligations_fee_template_id", "fee_obligations", ["fee_template_id"])

    # Payment ledger
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("student_id", sa.BigInteger(), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("requested_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("surcharge", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("operator", sa.String(20), nullable=True),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("transaction_id", sa.String(100), nullable=False),
        sa.Column("provider_reference", sa.String(100), nullable=True),
        sa.Column("receipt_number", sa.String(50), nullable=True),
        sa.Column("failure_reason", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        sa.UniqueConstraint("tenant_id", "transaction_id", name="uq_payments_tenant_transaction_id"),
    )
    op.create_index("ix_payments_tenant_id", "payments", ["tenant_id"])
    op.create_index("ix_payments_student_id", "payments", ["student_id"])
    op.create_index("ix_payments_method", "payments", ["method"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_transaction_id", "payments", ["transaction_id"])
    op.create_index("ix_payments_receipt_number", "payments", ["receipt_number"])

    # Subscription billing
    plans = op.create_table(
        "subscription_plans",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_price", sa.Numeric(15, 2), nullable=False),
        sa.Column("quarterly_price", sa.Numeric(15, 2), nullable=True),
        sa.Column("yearly_price", sa.Numeric(15, 2), nullable=False),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_teachers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_users", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_classes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("features", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tier", name="uq_subscription_plans_tier"),
    )

    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _tenant_fk(),
        sa.Column("plan_id", sa.BigInteger(), sa.ForeignKey("subscription_plans.id"), nullable=False),
        sa.Column("base_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("overage_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ZMW"),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("billing_cycle", sa.String(20), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("external_ref", sa.String(100), nullable=True),
        sa.Column("proof_reference", sa.String(100), nullable=True),
        sa.Column("receipt_number", sa.String(50), nullable=True),
        sa.Column("failure_reason", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscription_payments_tenant_id", "subscription_payments", ["tenant_id"])
    op.create_index("ix_subscription_payments_plan_id", "subscription_payments", ["plan_id"])
    op.create_index("ix_subscription_payments_status", "subscription_payments", ["status"])
    op.create_index(
        "ix_subscription_payments_external_ref", "subscription_payments", ["external_ref"], unique=True
    )

    op.bulk_insert(
        plans,
        [
            {
                "tier": "STARTER",
                "name": "Starter",
                "description": "Small schools getting started",
                "sort_order": 1,
                "monthly_price": 250,
                "yearly_price": 2500,
                "max_students": 200,
                "max_teachers": 15,
                "max_users": 20,
                "max_classes": 10,
                "features": ["fees", "payments"],
                "is_active": True,
            },
            {
                "tier": "PROFESSIONAL",
                "name": "Professional",
                "description": "Growing schools with mobile money collections",
                "sort_order": 2,
                "monthly_price": 600,
                "yearly_price": 6000,
                "max_students": 1000,
                "max_teachers": 60,
                "max_users": 80,
                "max_classes": 40,
                "features": ["fees", "payments", "mobile_money", "statements"],
                "is_active": True,
            },
            {
                "tier": "ENTERPRISE",
                "name": "Enterprise",
                "description": "Large schools and school groups",
                "sort_order": 3,
                "monthly_price": 1500,
                "yearly_price": 15000,
                "max_students": 0,
                "max_teachers": 0,
                "max_users": 0,
                "max_classes": 0,
                "features": ["fees", "payments", "mobile_money", "statements", "reports"],
                "is_active": True,
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("subscription_payments")
    op.drop_table("subscription_plans")
    op.drop_table("payments")
    op.drop_table("fee_obligations")
    op.drop_table("students")
    op.drop_table("school_classes")
    op.drop_table("fee_templates")
    op.drop_table("scholarships")
    op.drop_table("billing_periods")
    op.drop_table("audit_logs")
    op.drop_table("document_sequences")
    op.drop_table("users")
    op.drop_table("tenants")
