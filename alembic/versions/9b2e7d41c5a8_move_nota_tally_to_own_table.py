"""move nota tally to its own table

Revision ID: 9b2e7d41c5a8
Revises: 4f1c2a9d7e30
Create Date: 2026-10-19 16:40:05.512907

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "9b2e7d41c5a8"
down_revision: Union[str, Sequence[str], None] = "4f1c2a9d7e30"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Casting holds a share lock on the election row, so the NOTA counter
    # must not live on that row.
    op.execute("""
    CREATE TABLE IF NOT EXISTS nota_tallies (
        election_id UUID PRIMARY KEY REFERENCES elections(id) ON DELETE CASCADE,
        votes INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0)
    );

    INSERT INTO nota_tallies (election_id, votes)
    SELECT id, nota_votes FROM elections
    ON CONFLICT (election_id) DO NOTHING;

    ALTER TABLE elections DROP COLUMN IF EXISTS nota_votes;
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
    ALTER TABLE elections
        ADD COLUMN IF NOT EXISTS nota_votes INTEGER NOT NULL DEFAULT 0 CHECK (nota_votes >= 0);

    UPDATE elections e
    SET nota_votes = n.votes
    FROM nota_tallies n
    WHERE n.election_id = e.id;

    DROP TABLE IF EXISTS nota_tallies CASCADE;
    """)
