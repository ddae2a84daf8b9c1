"""
Tests for the Vote Reconciliation Engine.

Covers toggle semantics, optimistic updates, rollback on remote failure,
serialisation of rapid clicks, sign-in gating and close() semantics. The remote
store is an in-memory fake that applies the same counter rules as storage.set_vote.
"""

import asyncio
import itertools

import pytest

from src.backend.utils.errors import NoticeCollector
from src.models.social_models import (
    Session,
    VoteCounts,
    VoteDirection,
    VoteState,
    VoteTarget,
    counter_delta,
    resolve_toggle,
)
from src.voting import INVALIDATED_LISTINGS, VoteEngine, VotePhase

UP = VoteDirection.UP
DOWN = VoteDirection.DOWN
NONE = VoteDirection.NONE

POST = VoteTarget.post("p-1")


class FakeVoteStore:
    """In-memory VoteStore with optional gating and scripted failures."""

    def __init__(self, upvotes=5, downvotes=2, fail_calls=(), error=None):
        self.upvotes = upvotes
        self.downvotes = downvotes
        self.votes = {}
        self.calls = []
        self.fail_calls = set(fail_calls)
        self.error = error or RuntimeError("network unreachable")
        self.gate = None
        self.fetch_gate = None
        self.fetch_error = None
        self.fetch_calls = 0

    async def fetch_vote(self, user_id, target):
        self.fetch_calls += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.votes.get(user_id, NONE)

    async def apply_vote(self, user_id, target, direction):
        call_index = len(self.calls)
        self.calls.append(direction)
        if self.gate is not None:
            await self.gate.wait()
        if call_index in self.fail_calls:
            raise self.error

        old = self.votes.get(user_id, NONE)
        d_up, d_down = counter_delta(old, direction)
        self.upvotes += d_up
        self.downvotes += d_down
        if direction is NONE:
            self.votes.pop(user_id, None)
        else:
            self.votes[user_id] = direction
        return VoteCounts(self.upvotes, self.downvotes)


def _engine(store, user_id="user-1", **kwargs):
    kwargs.setdefault("upvotes", 5)
    kwargs.setdefault("downvotes", 2)
    return VoteEngine(Session(user_id=user_id), store, POST, **kwargs)


class TestToggleRule:
    """Test resolve_toggle and counter_delta helpers."""

    def test_same_direction_retracts(self):
        assert resolve_toggle(UP, UP) is NONE
        assert resolve_toggle(DOWN, DOWN) is NONE

    def test_other_direction_switches(self):
        assert resolve_toggle(UP, DOWN) is DOWN
        assert resolve_toggle(NONE, UP) is UP

    def test_none_is_not_a_castable_direction(self):
        with pytest.raises(ValueError):
            resolve_toggle(UP, NONE)

    def test_counter_delta_reverses_old_then_applies_new(self):
        assert counter_delta(NONE, UP) == (1, 0)
        assert counter_delta(UP, DOWN) == (-1, 1)
        assert counter_delta(DOWN, UP) == (1, -1)
        assert counter_delta(DOWN, NONE) == (0, -1)
        assert counter_delta(UP, UP) == (0, 0)


class TestCastVote:
    """Test the documented voting scenarios."""

    @pytest.mark.asyncio
    async def test_upvote_on_fresh_post(self):
        """Upvote on (5, 2) gives current_vote=UP, upvotes=6, score=4."""
        store = FakeVoteStore()
        engine = _engine(store)

        state = await engine.upvote()

        assert state.current_vote is UP
        assert state.upvotes == 6
        assert state.downvotes == 2
        assert state.score == 4
        assert store.calls == [UP]

    @pytest.mark.asyncio
    async def test_second_upvote_retracts(self):
        store = FakeVoteStore()
        engine = _engine(store)

        await engine.upvote()
        state = await engine.upvote()

        assert state.current_vote is NONE
        assert state.upvotes == 5
        assert state.score == 3
        assert store.calls == [UP, NONE]
        assert store.votes == {}

    @pytest.mark.asyncio
    async def test_switch_from_up_to_down(self):
        store = FakeVoteStore()
        engine = _engine(store)

        await engine.upvote()
        state = await engine.downvote()

        assert state.current_vote is DOWN
        assert (state.upvotes, state.downvotes) == (5, 3)
        assert state.score == 2

    @pytest.mark.asyncio
    async def test_final_vote_matches_toggle_of_any_sequence(self):
        """For every click sequence the final vote and score follow the toggle rule."""
        for length in range(1, 5):
            for clicks in itertools.product([UP, DOWN], repeat=length):
                store = FakeVoteStore(upvotes=5, downvotes=2)
                engine = _engine(store)

                expected = NONE
                for click in clicks:
                    expected = resolve_toggle(expected, click)
                    await engine.cast_vote(click)

                bonus = {UP: 1, DOWN: -1, NONE: 0}[expected]
                assert engine.state.current_vote is expected, clicks
                assert engine.state.score == 3 + bonus, clicks

    @pytest.mark.asyncio
    async def test_comment_target(self):
        store = FakeVoteStore(upvotes=0, downvotes=0)
        engine = VoteEngine(Session(user_id="user-1"), store, VoteTarget.comment("c-1"))

        state = await engine.downvote()

        assert state.target.comment_id == "c-1"
        assert state.current_vote is DOWN
        assert state.downvotes == 1

    @pytest.mark.asyncio
    async def test_adopts_authoritative_counts(self):
        """Counts from the store replace the optimistic ones on success."""
        store = FakeVoteStore(upvotes=40, downvotes=10)
        engine = _engine(store, upvotes=5, downvotes=2)

        state = await engine.upvote()

        assert (state.upvotes, state.downvotes) == (41, 10)
        assert engine.phase is VotePhase.SETTLED

    @pytest.mark.asyncio
    async def test_invalid_direction_rejected(self):
        engine = _engine(FakeVoteStore())
        with pytest.raises(ValueError):
            await engine.cast_vote(NONE)


class TestSignInRequired:
    """Test that signed-out visitors cannot vote."""

    @pytest.mark.asyncio
    async def test_unauthenticated_vote_is_rejected(self):
        store = FakeVoteStore()
        notices = NoticeCollector()
        engine = VoteEngine(Session(), store, POST, upvotes=5, downvotes=2, notices=notices)
        before = engine.state

        state = await engine.upvote()

        assert state == before
        assert store.calls == []
        assert notices.types() == ["sign_in_required"]
        assert engine.phase is VotePhase.IDLE


class TestRollback:
    """Test rollback to the pre-click snapshot on remote failure."""

    @pytest.mark.asyncio
    async def test_failure_restores_exact_snapshot(self):
        store = FakeVoteStore(fail_calls={0}, error=RuntimeError("database is locked"))
        notices = NoticeCollector()
        engine = _engine(store, notices=notices)
        snapshot = engine.state

        state = await engine.upvote()

        assert state == snapshot
        assert notices.types() == ["vote_failed"]
        assert notices.notices[0]["message"] == "database is locked"
        assert notices.notices[0]["context"]["target_id"] == "p-1"

    @pytest.mark.asyncio
    async def test_failure_after_previous_success_restores_that_state(self):
        store = FakeVoteStore(fail_calls={1})
        engine = _engine(store)

        confirmed = await engine.upvote()
        state = await engine.downvote()

        assert state == confirmed
        assert state.current_vote is UP

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self):
        store = FakeVoteStore(fail_calls={0})
        engine = _engine(store)

        await engine.upvote()

        assert store.calls == [UP]

    @pytest.mark.asyncio
    async def test_failure_does_not_invalidate(self):
        invalidated = []
        store = FakeVoteStore(fail_calls={0})
        engine = _engine(store, invalidate=invalidated.append)

        await engine.upvote()

        assert invalidated == []


class TestInvalidation:
    """Test listing invalidation on success."""

    @pytest.mark.asyncio
    async def test_success_invalidates_listings(self):
        invalidated = []
        engine = _engine(FakeVoteStore(), invalidate=invalidated.append)

        await engine.upvote()

        assert invalidated == [INVALIDATED_LISTINGS]
        assert INVALIDATED_LISTINGS == ("posts", "questions", "confessions")


class TestConcurrentClicks:
    """Test rapid repeated clicks while a mutation is in flight."""

    @pytest.mark.asyncio
    async def test_optimistic_state_visible_before_confirmation(self):
        store = FakeVoteStore()
        store.gate = asyncio.Event()
        engine = _engine(store)

        task = asyncio.create_task(engine.upvote())
        await asyncio.sleep(0)

        assert engine.state.current_vote is UP
        assert engine.state.upvotes == 6
        assert engine.phase is VotePhase.PENDING
        assert engine.is_voting
        assert engine.pending.snapshot.current_vote is NONE

        store.gate.set()
        await task

        assert engine.phase is VotePhase.SETTLED
        assert not engine.is_voting
        assert engine.pending is None

    @pytest.mark.asyncio
    async def test_rapid_clicks_converge_to_final_intent(self):
        """UP, DOWN, DOWN clicked before any completion ends with no vote."""
        store = FakeVoteStore()
        store.gate = asyncio.Event()
        engine = _engine(store)

        tasks = [
            asyncio.create_task(engine.upvote()),
            asyncio.create_task(engine.downvote()),
            asyncio.create_task(engine.downvote()),
        ]
        await asyncio.sleep(0)

        assert engine.state.current_vote is NONE
        assert (engine.state.upvotes, engine.state.downvotes) == (5, 2)

        store.gate.set()
        await asyncio.gather(*tasks)

        assert store.calls == [UP, DOWN, NONE]
        assert store.votes == {}
        assert engine.state == VoteState(POST, NONE, 5, 2)

    @pytest.mark.asyncio
    async def test_mutations_are_dispatched_one_at_a_time(self):
        store = FakeVoteStore()
        store.gate = asyncio.Event()
        engine = _engine(store)

        first = asyncio.create_task(engine.upvote())
        second = asyncio.create_task(engine.downvote())
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert store.calls == [UP]

        store.gate.set()
        await asyncio.gather(first, second)
        assert store.calls == [UP, DOWN]

    @pytest.mark.asyncio
    async def test_earlier_failure_does_not_clobber_later_click(self):
        store = FakeVoteStore(fail_calls={0})
        store.gate = asyncio.Event()
        notices = NoticeCollector()
        engine = _engine(store, notices=notices)

        first = asyncio.create_task(engine.upvote())
        second = asyncio.create_task(engine.downvote())
        await asyncio.sleep(0)
        store.gate.set()
        await asyncio.gather(first, second)

        assert engine.state == VoteState(POST, DOWN, 5, 3)
        assert notices.types() == ["vote_failed"]

    @pytest.mark.asyncio
    async def test_all_failures_restore_last_confirmed_state(self):
        store = FakeVoteStore(fail_calls={0, 1})
        store.gate = asyncio.Event()
        notices = NoticeCollector()
        engine = _engine(store, notices=notices)
        initial = engine.state

        first = asyncio.create_task(engine.upvote())
        second = asyncio.create_task(engine.downvote())
        await asyncio.sleep(0)
        store.gate.set()
        await asyncio.gather(first, second)

        assert engine.state == initial
        assert notices.types() == ["vote_failed", "vote_failed"]


class TestClose:
    """Test that completions after close() are no-ops."""

    @pytest.mark.asyncio
    async def test_success_after_close_changes_nothing(self):
        invalidated = []
        store = FakeVoteStore(upvotes=50, downvotes=0)
        store.gate = asyncio.Event()
        engine = _engine(store, invalidate=invalidated.append)

        task = asyncio.create_task(engine.upvote())
        await asyncio.sleep(0)
        optimistic = engine.state
        engine.close()
        store.gate.set()
        await task

        assert engine.state == optimistic
        assert invalidated == []

    @pytest.mark.asyncio
    async def test_failure_after_close_raises_no_notice(self):
        store = FakeVoteStore(fail_calls={0})
        store.gate = asyncio.Event()
        notices = NoticeCollector()
        engine = _engine(store, notices=notices)

        task = asyncio.create_task(engine.upvote())
        await asyncio.sleep(0)
        engine.close()
        store.gate.set()
        await task

        assert len(notices) == 0

    @pytest.mark.asyncio
    async def test_cast_after_close_is_ignored(self):
        store = FakeVoteStore()
        engine = _engine(store)
        engine.close()

        await engine.upvote()

        assert store.calls == []
        assert engine.closed


class TestLoad:
    """Test lazy loading of the user's existing vote."""

    @pytest.mark.asyncio
    async def test_load_existing_vote(self):
        store = FakeVoteStore()
        store.votes["user-1"] = DOWN
        engine = _engine(store)

        state = await engine.load()

        assert state.current_vote is DOWN
        assert (state.upvotes, state.downvotes) == (5, 2)

    @pytest.mark.asyncio
    async def test_loaded_vote_then_toggle(self):
        store = FakeVoteStore()
        store.votes["user-1"] = UP
        engine = _engine(store, upvotes=6)

        await engine.load()
        state = await engine.upvote()

        assert state.current_vote is NONE
        assert state.upvotes == 5

    @pytest.mark.asyncio
    async def test_load_skipped_when_signed_out(self):
        store = FakeVoteStore()
        engine = VoteEngine(Session(), store, POST)

        state = await engine.load()

        assert state.current_vote is NONE
        assert store.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_load_failure_leaves_state_unchanged(self):
        store = FakeVoteStore()
        store.fetch_error = RuntimeError("timeout")
        engine = _engine(store)
        before = engine.state

        assert await engine.load() == before

    @pytest.mark.asyncio
    async def test_load_result_ignored_after_a_cast(self):
        store = FakeVoteStore()
        store.votes["user-1"] = DOWN
        store.fetch_gate = asyncio.Event()
        engine = _engine(store)

        loading = asyncio.create_task(engine.load())
        await asyncio.sleep(0)
        await engine.upvote()
        store.fetch_gate.set()
        await loading

        assert engine.state.current_vote is UP


class TestSyncCounts:
    """Test mirroring refreshed listing counts."""

    def test_sync_counts_when_idle(self):
        engine = _engine(FakeVoteStore())
        engine.sync_counts(10, 4)
        assert (engine.state.upvotes, engine.state.downvotes) == (10, 4)

    @pytest.mark.asyncio
    async def test_sync_counts_ignored_while_pending(self):
        store = FakeVoteStore()
        store.gate = asyncio.Event()
        engine = _engine(store)

        task = asyncio.create_task(engine.upvote())
        await asyncio.sleep(0)
        engine.sync_counts(100, 100)

        assert engine.state.upvotes == 6

        store.gate.set()
        await task


class TestVoteState:
    """Test VoteState invariants."""

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError):
            VoteState(POST, NONE, -1, 0)

    def test_with_vote_clamps_at_zero(self):
        state = VoteState(POST, UP, 0, 0).with_vote(NONE)
        assert state.upvotes == 0

    def test_score_may_be_negative(self):
        assert VoteState(POST, NONE, 1, 4).score == -3

    def test_target_requires_exactly_one_id(self):
        with pytest.raises(ValueError):
            VoteTarget.from_ids(post_id="p-1", comment_id="c-1")
        with pytest.raises(ValueError):
            VoteTarget.from_ids()
        assert VoteTarget.from_ids(comment_id="c-1").post_id is None
