"""create_people_and_faces

Revision ID: 3c1d2e9a7f40
Revises:
Create Date: 2026-10-18 09:12:44.512301

"""
from alembic import op
import sqlalchemy as sa
import pgvector.sqlalchemy
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '3c1d2e9a7f40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:

    op.execute("CREATE EXTENSION IF NOT EXISTS vector;")

    op.create_table(
        "people",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "embeddings",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("centroid", pgvector.sqlalchemy.vector.VECTOR(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "name", name="uq_people_owner_name")
    )
    op.create_index(op.f("ix_people_id"), "people", ["id"], unique=False)
    op.create_index(op.f("ix_people_owner_id"), "people", ["owner_id"], unique=False)

    op.create_table(
        "faces",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("photo_id", sa.String(length=64), nullable=False),
        sa.Column("box_x", sa.Float(), nullable=False),
        sa.Column("box_y", sa.Float(), nullable=False),
        sa.Column("box_width", sa.Float(), nullable=False),
        sa.Column("box_height", sa.Float(), nullable=False),
        sa.Column("identity_id", sa.Integer(), nullable=True),
        sa.Column("embedding", pgvector.sqlalchemy.vector.VECTOR(), nullable=True),
        sa.Column("detector_confidence", sa.Float(), nullable=False),
        sa.Column(
            "learning_confirmed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false")
        ),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True
        ),
        sa.ForeignKeyConstraint(
            ["identity_id"],
            ["people.id"],
            ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id")
    )
    op.create_index(op.f("ix_faces_id"), "faces", ["id"], unique=False)
    op.create_index(op.f("ix_faces_owner_id"), "faces", ["owner_id"], unique=False)
    op.create_index(op.f("ix_faces_photo_id"), "faces", ["photo_id"], unique=False)
    op.create_index(op.f("ix_faces_identity_id"), "faces", ["identity_id"], unique=False)
    op.create_index(op.f("ix_faces_created_at"), "faces", ["created_at"], unique=False)


def downgrade() -> None:

    op.drop_index(op.f("ix_faces_created_at"), table_name="faces")
    op.drop_index(op.f("ix_faces_identity_id"), table_name="faces")
    op.drop_index(op.f("ix_faces_photo_id"), table_name="faces")
    op.drop_index(op.f("ix_faces_owner_id"), table_name="faces")
    op.drop_index(op.f("ix_faces_id"), table_name="faces")
    op.drop_table("faces")

    op.drop_index(op.f("ix_people_owner_id"), table_name="people")
    op.drop_index(op.f("ix_people_id"), table_name="people")
    op.drop_table("people")
