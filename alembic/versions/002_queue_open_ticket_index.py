"""One open queue ticket per patient, doctor and day.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_TICKET_CONDITION = "status IN ('WAITING', 'CALLED', 'IN_PROGRESS')"


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_index(
        "uq_queue_tickets_open_patient",
        "queue_tickets",
        ["doctor_id", "patient_id", "queue_date"],
        unique=True,
        postgresql_where=sa.text(OPEN_TICKET_CONDITION),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("uq_queue_tickets_open_patient", table_name="queue_tickets")
