"""Seed a demo teacher, a cohort of students and one live election.

This script is idempotent - accounts that already exist are reused.

Usage:
    python scripts/seed_demo.py --branch cse --section a --students 10
"""

import argparse
import asyncio
from datetime import UTC, datetime, timedelta

import asyncpg

from classvote.core.config import get_settings
from classvote.core.security import hash_password
from classvote.services import elections as election_service
from classvote.services.repository import PostgresVotingRepository

DEMO_PASSWORD = "password123"


async def seed_demo(branch: str, section: str, students: int, hours: int) -> None:
    settings = get_settings()
    conn = await asyncpg.connect(dsn=settings.DATABASE_URL)
    repo = PostgresVotingRepository(conn)
    password_hash = hash_password(DEMO_PASSWORD)
    admission_year = datetime.now(UTC).year - 1

    print("=" * 60)
    print("SEEDING DEMO CLASS ELECTION")
    print("=" * 60)

    try:
        teacher_email = "teacher@example.edu"
        teacher = await repo.get_teacher_by_email(teacher_email)
        if not teacher:
            teacher = await repo.create_teacher(
                name="Demo Teacher", email=teacher_email, password_hash=password_hash
            )
            print(f"\n✓ Created teacher: {teacher_email}")
        else:
            print(f"\n✓ Teacher already exists: {teacher_email}")

        cohort = []
        for n in range(1, students + 1):
            usn = f"1XX{admission_year % 100:02d}{branch.upper()}{n:03d}"
            student = await repo.get_student_by_login(usn)
            if not student:
                student = await repo.create_student(
                    usn=usn,
                    name=f"Student {n}",
                    email=f"{usn.lower()}@example.edu",
                    password_hash=password_hash,
                    admission_year=admission_year,
                    branch=branch,
                    section=section,
                )
            cohort.append(student)
        print(f"✓ Cohort {branch.upper()}-{section.upper()}: {len(cohort)} students")

        now = datetime.now(UTC)
        election = await election_service.create_election(
            repo,
            teacher_id=teacher["id"],
            title=f"Class Representative {branch.upper()}-{section.upper()}",
            description="Demo election",
            branch=branch,
            section=section,
            admission_year=admission_year,
            start_time=now,
            end_time=now + timedelta(hours=hours),
            candidate_ids=[s["id"] for s in cohort[:3]],
            now=now,
        )
        print(f"✓ Created election: {election['title']} ({election['id']})")

        print("\n" + "=" * 60)
        print(f"All accounts use the password '{DEMO_PASSWORD}'")
        print(f"  Teacher: {teacher_email}")
        print(f"  Student: {cohort[0]['email']}")
        print("=" * 60 + "\n")
    finally:
        await conn.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed a demo class election")
    parser.add_argument("--branch", default="cse", help="Cohort branch (default: cse)")
    parser.add_argument("--section", default="a", help="Cohort section (default: a)")
    parser.add_argument(
        "--students", type=int, default=10, help="Number of students (at least 3)"
    )
    parser.add_argument(
        "--hours", type=int, default=24, help="How long the election stays live"
    )

    args = parser.parse_args()
    if args.students < 3:
        parser.error("--students must be at least 3")

    asyncio.run(seed_demo(args.branch.lower(), args.section.lower(), args.students, args.hours))
