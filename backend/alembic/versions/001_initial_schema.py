"""Initial schema - all tables

Revision ID: 0001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)

USER_ROLES = (
    "client", "admin", "superadmin", "avocat", "assistant",
    "comptable", "secretaire", "juriste", "stagiaire", "visiteur",
)
DOSSIER_STATUSES = (
    "recu", "accepte", "refuse", "en_attente_onboarding", "en_cours_instruction",
    "pieces_manquantes", "dossier_complet", "depose", "reception_confirmee",
    "complement_demande", "decision_defavorable", "communication_motifs",
    "recours_preparation", "refere_mesures_utiles", "refere_suspension_rep",
    "gain_cause", "rejet", "decision_favorable",
    "en_attente", "en_cours", "en_revision", "termine", "annule",
)
DOSSIER_CATEGORIES = (
    "sejour_titres", "contentieux_administratif", "asile", "regroupement_familial",
    "nationalite_francaise", "eloignement_urgence", "autre",
)
PRIORITIES = ("basse", "normale", "haute", "urgente")
NOTIFICATION_TYPES = (
    "dossier_created", "dossier_updated", "dossier_status_changed", "dossier_assigned",
    "dossier_deleted", "task_assigned", "task_updated", "appointment_created",
    "appointment_confirmed", "appointment_cancelled", "appointment_updated",
    "message_received", "system",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ── Auth ──────────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", sa.Enum(*USER_ROLES, name="userrole"), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("birth_place", sa.String(150), nullable=True),
        sa.Column("nationality", sa.String(100), nullable=True),
        sa.Column("sex", sa.Enum("M", "F", "Autre", name="sex"), nullable=True),
        sa.Column("foreigner_number", sa.String(50), nullable=True),
        sa.Column("permit_number", sa.String(50), nullable=True),
        sa.Column("permit_type", sa.String(100), nullable=True),
        sa.Column("permit_issued_on", sa.Date(), nullable=True),
        sa.Column("permit_expires_on", sa.Date(), nullable=True),
        sa.Column("postal_address", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("country", sa.String(100), nullable=False, server_default="France"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("profile_complete", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("failed_login_attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    # ── Dossiers ──────────────────────────────────────────────────────

    op.create_table(
        "dossiers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("numero", sa.String(32), nullable=True),
        sa.Column("owner_kind", sa.Enum("registered", "anonymous", name="ownerkind"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("client_last_name", sa.String(100), nullable=True),
        sa.Column("client_first_name", sa.String(100), nullable=True),
        sa.Column("client_email", sa.String(255), nullable=True),
        sa.Column("client_phone", sa.String(50), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.Enum(*DOSSIER_CATEGORIES, name="dossiercategory"), nullable=False),
        sa.Column("case_type", sa.String(100), nullable=True),
        sa.Column("status", sa.Enum(*DOSSIER_STATUSES, name="dossierstatus"), nullable=False),
        sa.Column("priority", sa.Enum(*PRIORITIES, name="dossierpriority"), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("refusal_reason", sa.Text(), nullable=True),
        sa.Column("created_by", UUID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assigned_to", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("numero", name="uq_dossiers_numero"),
        sa.CheckConstraint(
            "(owner_kind = 'registered' AND user_id IS NOT NULL AND client_last_name IS NULL"
            " AND client_first_name IS NULL AND client_email IS NULL AND client_phone IS NULL)"
            " OR (owner_kind = 'anonymous' AND user_id IS NULL AND client_last_name IS NOT NULL"
            " AND client_first_name IS NOT NULL AND client_email IS NOT NULL)",
            name="ck_dossiers_owner_xor",
        ),
    )
    op.create_index("ix_dossiers_user_id", "dossiers", ["user_id"])
    op.create_index("ix_dossiers_client_email", "dossiers", ["client_email"])
    op.create_index("ix_dossiers_status", "dossiers", ["status"])
    op.create_index("ix_dossiers_assigned_to", "dossiers", ["assigned_to"])

    op.create_table(
        "dossier_counters",
        sa.Column("day", sa.Date(), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    # ── Documents ─────────────────────────────────────────────────────

    op.create_table(
        "documents",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("owner_id", UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("dossier_id", UUID, sa.ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("original_filename", sa.String(500), nullable=False),
        sa.Column("stored_path", sa.String(1000), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_documents_owner_id", "documents", ["owner_id"])
    op.create_index("ix_documents_dossier_id", "documents", ["dossier_id"])

    # ── Tasks ─────────────────────────────────────────────────────────

    op.create_table(
        "tasks",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("dossier_id", UUID, sa.ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("assigned_to", UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_by", UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("a_faire", "en_cours", "en_attente", "termine", "annule", name="taskstatus"),
            nullable=False,
        ),
        sa.Column("priority", sa.Enum(*PRIORITIES, name="taskpriority"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tasks_dossier_id", "tasks", ["dossier_id"])
    op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])
    op.create_index("ix_tasks_status", "tasks", ["status"])

    # ── Scheduling ────────────────────────────────────────────────────

    op.create_table(
        "creneaux",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("slot_time", sa.String(5), nullable=False),
        sa.Column("is_closed", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("closure_reason", sa.String(255), nullable=True),
        sa.Column("created_by", UUID, sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("slot_date", "slot_time", name="uq_creneaux_slot_date"),
    )
    op.create_index("ix_creneaux_slot_date", "creneaux", ["slot_date"])

    op.create_table(
        "rendez_vous",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("dossier_id", UUID, sa.ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.String(5), nullable=False),
        sa.Column("motive", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column(
            "status",
            sa.Enum("en_attente", "confirme", "annule", "termine", name="appointmentstatus"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rendez_vous_user_id", "rendez_vous", ["user_id"])
    op.create_index("ix_rendez_vous_email", "rendez_vous", ["email"])
    op.create_index("ix_rendez_vous_status", "rendez_vous", ["status"])
    op.create_index(
        "uq_rendez_vous_active_slot",
        "rendez_vous",
        ["appointment_date", "appointment_time"],
        unique=True,
        postgresql_where=sa.text("status IN ('en_attente', 'confirme')"),
        sqlite_where=sa.text("status IN ('en_attente', 'confirme')"),
    )

    # ── Messages ──────────────────────────────────────────────────────

    op.create_table(
        "messages",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("sender_id", UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("dossier_id", UUID, sa.ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_dossier_id", "messages", ["dossier_id"])

    for table, extra in (
        ("message_recipients", []),
        ("message_reads", [sa.Column("read_at", sa.DateTime(timezone=True), nullable=False)]),
        ("message_archives", [sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False)]),
    ):
        op.create_table(
            table,
            sa.Column("id", UUID, primary_key=True),
            sa.Column("message_id", UUID, sa.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", UUID, sa.ForeignKey("users.id"), nullable=False),
            *extra,
            sa.UniqueConstraint("message_id", "user_id", name=f"uq_{table}_message_id"),
        )
        op.create_index(f"ix_{table}_message_id", table, ["message_id"])
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])

    # ── Contact form ──────────────────────────────────────────────────

    op.create_table(
        "contact_messages",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("documents", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_answered", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("response", sa.Text(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_contact_messages_email", "contact_messages", ["email"])
    op.create_index("ix_contact_messages_is_read", "contact_messages", ["is_read"])
    op.create_index("ix_contact_messages_is_answered", "contact_messages", ["is_answered"])

    # ── Notifications ─────────────────────────────────────────────────

    op.create_table(
        "notifications",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.Enum(*NOTIFICATION_TYPES, name="notificationtype"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column(
            "type",
            postgresql.ENUM(*NOTIFICATION_TYPES, name="notificationtype", create_type=False),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column(
            "status", sa.Enum("pending", "delivered", "failed", name="outboxstatus"), nullable=False
        ),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_id", UUID, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_notification_outbox_status", "notification_outbox", ["status"])

    # ── Activity logs ─────────────────────────────────────────────────

    op.create_table(
        "activity_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("target_user_id", UUID, nullable=True),
        sa.Column("target_user_email", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_target_user_id", "activity_logs", ["target_user_id"])
    op.create_index("ix_activity_logs_timestamp", "activity_logs", ["timestamp"])


def downgrade() -> None:
    for table in (
        "activity_logs",
        "notification_outbox",
        "notifications",
        "contact_messages",
        "message_archives",
        "message_reads",
        "message_recipients",
        "messages",
        "rendez_vous",
        "creneaux",
        "tasks",
        "documents",
        "dossier_counters",
        "dossiers",
        "users",
    ):
        op.drop_table(table)

    for enum_name in (
        "outboxstatus",
        "notificationtype",
        "appointmentstatus",
        "taskpriority",
        "taskstatus",
        "dossierpriority",
        "dossierstatus",
        "dossiercategory",
        "ownerkind",
        "sex",
        "userrole",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
