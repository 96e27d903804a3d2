"""Messaging schema - profiles, conversations, messages

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the messaging relations plus the storage-owned objects the service
layer relies on:
- messages_touch_conversation trigger (advances last_message_at on insert)
- mark_messages_as_read(conversation_uuid, reader_uuid) procedure
- row-level security policies, installed only where auth.uid() exists (Supabase)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # profiles table (identity directory, read-only for this subsystem)
    # ==========================================================================
    op.create_table(
        "profiles",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # conversations table
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("participant_a", sa.UUID(), nullable=False),
        sa.Column("participant_b", sa.UUID(), nullable=False),
        sa.Column(
            "last_message_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["participant_a"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["participant_b"], ["profiles.id"], ondelete="CASCADE"),
        # Pair is stored sorted so one unique constraint covers both orderings
        sa.CheckConstraint(
            "participant_a < participant_b",
            name="ck_conversations_canonical_pair",
        ),
        sa.UniqueConstraint("participant_a", "participant_b", name="uix_conversations_pair"),
    )

    op.create_index("ix_conversations_participant_a", "conversations", ["participant_a"])
    op.create_index("ix_conversations_participant_b", "conversations", ["participant_b"])
    op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"])

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("sender_id", sa.UUID(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.Text(), server_default="text", nullable=False),
        sa.Column("file_url", sa.Text(), nullable=True),
        sa.Column("file_name", sa.Text(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "message_type IN ('text', 'image', 'file')",
            name="ck_messages_message_type",
        ),
        sa.CheckConstraint(
            "file_size IS NULL OR file_size >= 0",
            name="ck_messages_file_size_non_negative",
        ),
    )

    # Page scans: newest-first within one conversation
    op.create_index(
        "ix_messages_conversation_created",
        "messages",
        ["conversation_id", "created_at", "id"],
    )
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])

    # Unread counts only touch unread rows
    op.create_index(
        "ix_messages_unread",
        "messages",
        ["conversation_id", "sender_id"],
        postgresql_where=sa.text("is_read = false"),
    )

    # ==========================================================================
    # Trigger: advance conversation activity on message insert
    # ==========================================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION touch_conversation_on_message()
        RETURNS trigger AS $$
        BEGIN
            UPDATE conversations
            SET last_message_at = NEW.created_at, updated_at = now()
            WHERE id = NEW.conversation_id;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)

    op.execute("""
        CREATE TRIGGER messages_touch_conversation
        AFTER INSERT ON messages
        FOR EACH ROW EXECUTE FUNCTION touch_conversation_on_message()
    """)

    # ==========================================================================
    # Procedure: atomic read-state transition
    # ==========================================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION mark_messages_as_read(conversation_uuid UUID, reader_uuid UUID)
        RETURNS integer AS $$
        DECLARE
            updated_count integer;
        BEGIN
            UPDATE messages
            SET is_read = true, read_at = now(), updated_at = now()
            WHERE conversation_id = conversation_uuid
              AND sender_id <> reader_uuid
              AND is_read = false
              AND EXISTS (
                  SELECT 1 FROM conversations c
                  WHERE c.id = conversation_uuid
                    AND reader_uuid IN (c.participant_a, c.participant_b)
              );
            GET DIAGNOSTICS updated_count = ROW_COUNT;
            RETURN updated_count;
        END;
        $$ LANGUAGE plpgsql SECURITY DEFINER
    """)

    # ==========================================================================
    # Row-level security (Supabase only: requires auth.uid())
    # ==========================================================================
    op.execute("""
        DO $$
        BEGIN
            IF to_regprocedure('auth.uid()') IS NULL THEN
                RETURN;
            END IF;

            ALTER TABLE conversations ENABLE ROW LEVEL SECURITY;
            ALTER TABLE messages ENABLE ROW LEVEL SECURITY;

            CREATE POLICY conversations_select_participant ON conversations
                FOR SELECT USING (auth.uid() IN (participant_a, participant_b));

            CREATE POLICY conversations_insert_participant ON conversations
                FOR INSERT WITH CHECK (auth.uid() IN (participant_a, participant_b));

            CREATE POLICY messages_select_participant ON messages
                FOR SELECT USING (
                    EXISTS (
                        SELECT 1 FROM conversations c
                        WHERE c.id = messages.conversation_id
                          AND auth.uid() IN (c.participant_a, c.participant_b)
                    )
                );

            CREATE POLICY messages_insert_sender ON messages
                FOR INSERT WITH CHECK (
                    auth.uid() = sender_id
                    AND EXISTS (
                        SELECT 1 FROM conversations c
                        WHERE c.id = messages.conversation_id
                          AND auth.uid() IN (c.participant_a, c.participant_b)
                    )
                );

            CREATE POLICY messages_update_participant ON messages
                FOR UPDATE USING (
                    EXISTS (
                        SELECT 1 FROM conversations c
                        WHERE c.id = messages.conversation_id
                          AND auth.uid() IN (c.participant_a, c.participant_b)
                    )
                );
        END
        $$
    """)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS mark_messages_as_read(UUID, UUID)")
    op.execute("DROP TRIGGER IF EXISTS messages_touch_conversation ON messages")
    op.execute("DROP FUNCTION IF EXISTS touch_conversation_on_message()")

    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("profiles")
