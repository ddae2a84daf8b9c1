#!/usr/bin/env python3
"""
Campus Pulse - Development Seed Data Script
Generates demo posts, comments, votes and notifications for frontend development.
Idempotent: safe to run multiple times (fixed ids, INSERT OR IGNORE, absolute votes).
"""

import os
import sqlite3
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from src.backend.db.connection import initialize_schema
from src.models.social_models import VoteDirection, VoteTarget
from src.storage import set_vote

# Default database path (configurable via DB_PATH env var)
DEFAULT_DB_PATH = "./data/campus.db"
SEED_SQL_PATH = Path(__file__).resolve().parent.parent / "src" / "backend" / "db" / "seed.sql"

DEMO_USERS = ["demo-aarav", "demo-meera", "demo-kabir", "demo-zoya", "demo-ishaan"]


def get_db_path():
    """Get database path from environment or use default."""
    return os.environ.get("DB_PATH", DEFAULT_DB_PATH)


def connect_db(db_path):
    """Connect to SQLite database with foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _ago(**kwargs):
    moment = datetime.now(timezone.utc) - timedelta(**kwargs)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def seed_communities(conn):
    conn.executescript(SEED_SQL_PATH.read_text(encoding="utf-8"))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn.execute("SELECT COUNT(*) FROM communities").fetchone()[0]


def seed_posts(conn):
    """Create demo posts across every post type, one of them pinned."""
    posts_data = [
        # (id, author, community, type, identity, pseudonym, title, content, pinned, age)
        ("demo-p-1", "demo-aarav", "c-general", "discussion", "named", None,
         "Welcome to Campus Pulse",
         "Be kind, keep it anonymous when you need to, and report anything that crosses a line.",
         1, {"days": 6}),
        ("demo-p-2", "demo-meera", "c-academics", "question", "anonymous", None,
         "Is DBMS with Prof. Rao worth it as an elective?",
         "Heard the assignments are heavy but the exams are fair. Anyone taken it recently?",
         0, {"days": 2}),
        ("demo-p-3", "demo-kabir", "c-hostel", "rant", "pseudonymous", "MessSurvivor",
         "Paneer for the fourth day straight",
         "I am begging the mess committee to discover a second vegetable.",
         0, {"hours": 20}),
        ("demo-p-4", "demo-zoya", "c-mental-health", "confession", "anonymous", None,
         "I have not attended a lecture in two weeks",
         "It started with one skipped class and now I do not know how to go back.",
         0, {"hours": 9}),
        ("demo-p-5", "demo-ishaan", "c-placements", "advice", "named", None,
         "What finally got me an internship",
         "Build one project you can talk about for thirty minutes. Recruiters noticed.",
         0, {"hours": 3}),
        ("demo-p-6", "demo-zoya", "c-academics", "question", "anonymous", None,
         "Where can I print at 2am?",
         "The library printer is down and my report is due at 9.",
         0, {"minutes": 40}),
    ]

    cursor = conn.cursor()
    for (post_id, user_id, community_id, post_type, identity, pseudonym,
         title, content, pinned, age) in posts_data:
        created_at = _ago(**age)
        cursor.execute("""
            INSERT OR IGNORE INTO posts
            (id, user_id, community_id, title, content, post_type, identity_type,
             pseudonym, is_pinned, is_demo, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
        """, (post_id, user_id, community_id, title, content, post_type, identity,
              pseudonym, pinned, created_at, created_at))

    conn.commit()
    return [p[0] for p in posts_data]


def seed_comments(conn):
    """Create comments, including a threaded reply and a best answer."""
    comments_data = [
        # (id, post, parent, author, identity, content, best)
        ("demo-c-1", "demo-p-2", None, "demo-kabir", "named",
         "Took it last year. Heavy, but you will actually learn SQL.", 1),
        ("demo-c-2", "demo-p-2", "demo-c-1", "demo-meera", "anonymous",
         "Thanks, was the project individual or group?", 0),
        ("demo-c-3", "demo-p-3", None, "demo-aarav", "anonymous",
         "Tuesday has rajma. Hold on.", 0),
        ("demo-c-4", "demo-p-4", None, "demo-ishaan", "named",
         "Been there. Email one professor today, just one. It gets easier.", 0),
        ("demo-c-5", "demo-p-6", None, "demo-aarav", "named",
         "The 24h reading room kiosk works, bring your ID card.", 0),
    ]

    cursor = conn.cursor()
    for comment_id, post_id, parent_id, user_id, identity, content, best in comments_data:
        cursor.execute("""
            INSERT OR IGNORE INTO comments
            (id, post_id, parent_id, user_id, content, identity_type, is_best_answer)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (comment_id, post_id, parent_id, user_id, content, identity, best))

    # comment_count is derived, so it stays correct on re-runs
    cursor.execute("""
        UPDATE posts SET comment_count = (
            SELECT COUNT(*) FROM comments WHERE comments.post_id = posts.id
        ) WHERE is_demo = 1
    """)
    conn.commit()
    return [c[0] for c in comments_data]


def seed_votes(conn, post_ids, comment_ids):
    """Cast demo votes through set_vote so counters match the vote rows."""
    count = 0
    for i, post_id in enumerate(post_ids):
        for j, user_id in enumerate(DEMO_USERS):
            if (i + j) % 3 == 0:
                direction = VoteDirection.UP
            elif (i + j) % 5 == 0:
                direction = VoteDirection.DOWN
            else:
                continue
            set_vote(conn, user_id, VoteTarget.post(post_id), direction)
            count += 1

    for comment_id in comment_ids:
        for user_id in DEMO_USERS[:2]:
            set_vote(conn, user_id, VoteTarget.comment(comment_id), VoteDirection.UP)
            count += 1
    return count


def seed_notifications(conn):
    notifications_data = [
        ("demo-n-1", "demo-meera", "comment", "New comment on your post",
         "Someone commented on \"Is DBMS with Prof. Rao worth it as an elective?\"",
         "demo-p-2", "demo-c-1", 1),
        ("demo-n-2", "demo-kabir", "best_answer", "Your answer was marked best",
         "Your comment was chosen as the best answer.", "demo-p-2", "demo-c-1", 0),
        ("demo-n-3", "demo-zoya", "comment", "New comment on your post",
         "Someone commented on \"I have not attended a lecture in two weeks\"",
         "demo-p-4", "demo-c-4", 0),
    ]

    cursor = conn.cursor()
    for row in notifications_data:
        cursor.execute("""
            INSERT OR IGNORE INTO notifications
            (id, user_id, type, title, message, related_post_id, related_comment_id, is_read)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, row)

    conn.commit()
    return len(notifications_data)


def main():
    """Main execution function."""
    db_path = get_db_path()

    print("Campus Pulse - Seed Data Script")
    print(f"Database: {db_path}")
    print("-" * 60)

    # Ensure data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = connect_db(db_path)
        initialize_schema(conn)

        print("Seeding communities...", end=" ")
        community_count = seed_communities(conn)
        print(f"{community_count} communities present")

        print("Seeding posts...", end=" ")
        post_ids = seed_posts(conn)
        print(f"{len(post_ids)} posts created")

        print("Seeding comments...", end=" ")
        comment_ids = seed_comments(conn)
        print(f"{len(comment_ids)} comments created")

        print("Seeding votes...", end=" ")
        vote_count = seed_votes(conn, post_ids, comment_ids)
        print(f"{vote_count} votes cast")

        print("Seeding notifications...", end=" ")
        notification_count = seed_notifications(conn)
        print(f"{notification_count} notifications created")

        conn.close()

        print("-" * 60)
        print("Seed data creation complete!")
        print("\nSummary:")
        print(f"  Communities: {community_count}")
        print(f"  Posts: {len(post_ids)}")
        print(f"  Comments: {len(comment_ids)}")
        print(f"  Votes: {vote_count}")
        print(f"  Notifications: {notification_count}")

        return 0

    except sqlite3.Error as e:
        print(f"\nERROR: Database error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
