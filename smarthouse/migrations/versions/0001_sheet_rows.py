"""Sheet-shaped row store for housing data

Revision ID: 0001_sheet_rows
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_sheet_rows"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

cell_map = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "sheet_headers",
        sa.Column("title", sa.String(length=100), primary_key=True, nullable=False),
        sa.Column("headers", cell_map, nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "sheet_rows",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("sheet_title", sa.String(length=100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("data", cell_map, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("sheet_title", "position", name="uq_sheet_rows_title_position"),
    )
    op.create_index("ix_sheet_rows_sheet_title", "sheet_rows", ["sheet_title"])


def downgrade() -> None:
    op.drop_index("ix_sheet_rows_sheet_title", table_name="sheet_rows")
    op.drop_table("sheet_rows")
    op.drop_table("sheet_headers")
