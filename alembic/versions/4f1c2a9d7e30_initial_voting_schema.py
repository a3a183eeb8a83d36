"""initial voting schema

Revision ID: 4f1c2a9d7e30
Revises:
Create Date: 2026-10-19 10:12:41.208311

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "4f1c2a9d7e30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
    CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

    CREATE TABLE IF NOT EXISTS students (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        usn VARCHAR(20) NOT NULL UNIQUE,
        name VARCHAR(255) NOT NULL,
        email VARCHAR(255) NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        admission_year INTEGER NOT NULL,
        branch VARCHAR(50) NOT NULL,
        section VARCHAR(10) NOT NULL,
        gender VARCHAR(20),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_students_cohort ON students(branch, section);

    CREATE TABLE IF NOT EXISTS teachers (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        name VARCHAR(255) NOT NULL,
        email VARCHAR(255) NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS elections (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        title VARCHAR(255) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        branch VARCHAR(50) NOT NULL,
        section VARCHAR(10) NOT NULL,
        admission_year INTEGER,
        start_time TIMESTAMP WITH TIME ZONE NOT NULL,
        end_time TIMESTAMP WITH TIME ZONE NOT NULL,
        created_by UUID NOT NULL REFERENCES teachers(id) ON DELETE RESTRICT,
        nota_votes INTEGER NOT NULL DEFAULT 0 CHECK (nota_votes >= 0),
        started_notified_at TIMESTAMP WITH TIME ZONE,
        ended_notified_at TIMESTAMP WITH TIME ZONE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT chk_elections_window CHECK (end_time > start_time)
    );

    CREATE INDEX IF NOT EXISTS idx_elections_cohort ON elections(branch, section);
    CREATE INDEX IF NOT EXISTS idx_elections_created_by ON elections(created_by);
    CREATE INDEX IF NOT EXISTS idx_elections_pending_start
        ON elections(start_time) WHERE started_notified_at IS NULL;
    CREATE INDEX IF NOT EXISTS idx_elections_pending_end
        ON elections(end_time) WHERE ended_notified_at IS NULL;

    CREATE TABLE IF NOT EXISTS election_candidates (
        election_id UUID NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
        student_id UUID NOT NULL REFERENCES students(id) ON DELETE RESTRICT,
        name VARCHAR(255) NOT NULL,
        usn VARCHAR(20) NOT NULL,
        votes INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0),
        display_order INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (election_id, student_id)
    );
    """)

    # One unused and one used ticket per (election, student) at most
    op.execute("""
    CREATE TABLE IF NOT EXISTS tickets (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        election_id UUID NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
        student_id UUID NOT NULL REFERENCES students(id) ON DELETE CASCADE,
        ticket_hash CHAR(64) NOT NULL UNIQUE,
        email VARCHAR(255) NOT NULL,
        used BOOLEAN NOT NULL DEFAULT FALSE,
        used_at TIMESTAMP WITH TIME ZONE,
        expires_at TIMESTAMP WITH TIME ZONE NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE UNIQUE INDEX IF NOT EXISTS uq_tickets_unused
        ON tickets(election_id, student_id) WHERE used = FALSE;
    CREATE UNIQUE INDEX IF NOT EXISTS uq_tickets_used
        ON tickets(election_id, student_id) WHERE used = TRUE;

    CREATE TABLE IF NOT EXISTS ballots (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        ballot_hash CHAR(64) NOT NULL UNIQUE,
        election_id UUID NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
        student_id UUID NOT NULL REFERENCES students(id) ON DELETE RESTRICT,
        candidate_id TEXT NOT NULL,
        cast_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT uq_ballots_election_student UNIQUE (election_id, student_id)
    );

    CREATE INDEX IF NOT EXISTS idx_ballots_cast_at ON ballots(cast_at DESC);
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS auth_attempts (
        id BIGSERIAL PRIMARY KEY,
        identifier VARCHAR(255) NOT NULL,
        attempted_at TIMESTAMP WITH TIME ZONE NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_auth_attempts_identifier
        ON auth_attempts(identifier, attempted_at);

    CREATE TABLE IF NOT EXISTS revoked_tokens (
        jti VARCHAR(64) PRIMARY KEY,
        expires_at TIMESTAMP WITH TIME ZONE NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_revoked_tokens_expires_at ON revoked_tokens(expires_at);
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
    DROP TABLE IF EXISTS revoked_tokens CASCADE;
    DROP TABLE IF EXISTS auth_attempts CASCADE;
    DROP TABLE IF EXISTS ballots CASCADE;
    DROP TABLE IF EXISTS tickets CASCADE;
    DROP TABLE IF EXISTS election_candidates CASCADE;
    DROP TABLE IF EXISTS elections CASCADE;
    DROP TABLE IF EXISTS teachers CASCADE;
    DROP TABLE IF EXISTS students CASCADE;
    """)
