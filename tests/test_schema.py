"""
Tests for the Campus Pulse database schema.

These tests verify that schema.sql:
- Creates every table and the posts_public view
- Enforces CHECK constraints on post types, identities and counters
- Allows at most one vote per (user, target) and exactly one target per vote
- Cascades deletes from posts to comments, votes and notifications
- Never exposes the author of an anonymous post through posts_public
"""

import sqlite3

import pytest

from tests.conftest import ALICE, BOB, insert_comment, insert_post


class TestSchemaCreation:
    """Verify schema creates all tables with the expected columns."""

    def test_all_tables_exist(self, schema_initialized_db, expected_tables):
        actual = {row[0] for row in schema_initialized_db.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )}
        for table in expected_tables:
            assert table in actual, f"Table {table} not found in schema"

    def test_posts_public_view_exists(self, schema_initialized_db):
        row = schema_initialized_db.execute(
            "SELECT name FROM sqlite_master WHERE type='view' AND name='posts_public'"
        ).fetchone()
        assert row is not None

    @pytest.mark.parametrize("table, required", [
        ("posts", ["id", "user_id", "community_id", "title", "content", "post_type",
                   "identity_type", "pseudonym", "upvotes", "downvotes", "comment_count", "is_pinned"]),
        ("comments", ["id", "post_id", "parent_id", "user_id", "content", "upvotes",
                      "downvotes", "is_best_answer"]),
        ("votes", ["id", "user_id", "post_id", "comment_id", "vote_type"]),
        ("notifications", ["id", "user_id", "type", "title", "message", "is_read"]),
        ("chat_messages", ["id", "conversation_id", "role", "content", "created_at"]),
    ])
    def test_columns(self, schema_initialized_db, table, required):
        columns = {row[1] for row in schema_initialized_db.execute(f"PRAGMA table_info({table})")}
        for col in required:
            assert col in columns, f"{table} missing required column: {col}"


class TestConstraints:
    """Verify CHECK and UNIQUE constraints."""

    def test_unknown_post_type_rejected(self, seeded_db):
        with pytest.raises(sqlite3.IntegrityError):
            insert_post(seeded_db, "p-bad", post_type="meme")

    def test_negative_counter_rejected(self, seeded_db):
        insert_post(seeded_db, "p-1")
        with pytest.raises(sqlite3.IntegrityError):
            seeded_db.execute("UPDATE posts SET upvotes = -1 WHERE id = 'p-1'")

    def test_one_vote_per_user_and_post(self, post_db):
        post_db.execute("INSERT INTO votes (id, user_id, post_id, vote_type) VALUES ('v-1', ?, 'p-1', 1)", (BOB,))
        with pytest.raises(sqlite3.IntegrityError):
            post_db.execute("INSERT INTO votes (id, user_id, post_id, vote_type) VALUES ('v-2', ?, 'p-1', -1)", (BOB,))

    def test_same_user_may_vote_post_and_comment(self, post_db):
        post_db.execute("INSERT INTO votes (id, user_id, post_id, vote_type) VALUES ('v-1', ?, 'p-1', 1)", (BOB,))
        post_db.execute("INSERT INTO votes (id, user_id, comment_id, vote_type) VALUES ('v-2', ?, 'c-1', 1)", (BOB,))
        post_db.commit()
        assert post_db.execute("SELECT COUNT(*) FROM votes").fetchone()[0] == 2

    @pytest.mark.parametrize("post_id, comment_id", [("p-1", "c-1"), (None, None)])
    def test_vote_needs_exactly_one_target(self, post_db, post_id, comment_id):
        with pytest.raises(sqlite3.IntegrityError):
            post_db.execute(
                "INSERT INTO votes (id, user_id, post_id, comment_id, vote_type) VALUES ('v-1', ?, ?, ?, 1)",
                (BOB, post_id, comment_id)
            )

    def test_vote_type_is_signed_unit(self, post_db):
        with pytest.raises(sqlite3.IntegrityError):
            post_db.execute("INSERT INTO votes (id, user_id, post_id, vote_type) VALUES ('v-1', ?, 'p-1', 0)", (BOB,))

    def test_chat_role_checked(self, schema_initialized_db):
        schema_initialized_db.execute(
            "INSERT INTO chat_conversations (id, user_id, title) VALUES ('conv-1', ?, 'hi')", (ALICE,)
        )
        with pytest.raises(sqlite3.IntegrityError):
            schema_initialized_db.execute(
                "INSERT INTO chat_messages (id, conversation_id, role, content) VALUES ('m-1', 'conv-1', 'system', 'x')"
            )


class TestCascades:
    """Verify ON DELETE behavior."""

    def test_deleting_post_removes_dependents(self, post_db):
        post_db.execute("INSERT INTO votes (id, user_id, comment_id, vote_type) VALUES ('v-1', ?, 'c-1', 1)", (ALICE,))
        post_db.execute(
            "INSERT INTO notifications (id, user_id, type, title, related_post_id) VALUES ('n-1', ?, 'comment', 't', 'p-1')",
            (ALICE,)
        )
        post_db.execute("DELETE FROM posts WHERE id = 'p-1'")
        post_db.commit()

        for table in ("comments", "votes", "notifications"):
            assert post_db.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0


class TestPostsPublicView:
    """Verify the identity-protecting view."""

    def test_anonymous_author_hidden(self, seeded_db):
        insert_post(seeded_db, "p-anon", identity_type="anonymous")
        insert_post(seeded_db, "p-named", identity_type="named", user_id=BOB)

        rows = {r["id"]: r["user_id"] for r in seeded_db.execute("SELECT id, user_id FROM posts_public")}

        assert rows == {"p-anon": None, "p-named": BOB}

    def test_community_name_joined(self, seeded_db):
        insert_post(seeded_db, "p-1", community_id="c-academics")
        insert_comment(seeded_db, "c-1", "p-1")

        row = seeded_db.execute("SELECT community_name FROM posts_public WHERE id = 'p-1'").fetchone()
        assert row["community_name"] == "Academics"

    def test_display_name_only_on_named_posts(self, seeded_db):
        for user_id in (ALICE, BOB):
            seeded_db.execute(
                "INSERT INTO profiles (user_id, display_name) VALUES (?, ?)", (user_id, f"name-{user_id}")
            )
        insert_post(seeded_db, "p-anon", identity_type="anonymous", user_id=ALICE)
        insert_post(seeded_db, "p-named", identity_type="named", user_id=BOB)
        seeded_db.commit()

        rows = {
            r["id"]: r["author_display_name"]
            for r in seeded_db.execute("SELECT id, author_display_name FROM posts_public")
        }

        assert rows == {"p-anon": None, "p-named": f"name-{BOB}"}
