import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine

from fairdraw.audit import (
    COMMIT_PUBLISHED,
    COMMIT_VERIFICATION_FAILED,
    CONTEST_CREATED,
    PARTICIPANT_JOINED,
    PRIZE_CLAIMED as PRIZE_CLAIMED_ACTION,
    ROSTER_FROZEN,
)
from fairdraw.config import Settings
from fairdraw.db.engine import get_sessionmaker, make_engine
from fairdraw.draw.scoring import ScoringFactors
from fairdraw.draw.selection import roster_digest
from fairdraw.draw.state import ContestState
from fairdraw.errors import (
    CommitVerificationError,
    ContestNotFoundError,
    InfrastructureError,
    PrizeNotFoundError,
    RosterFrozenError,
    ValidationError,
)
from fairdraw.events import (
    LEADERBOARD_UPDATE,
    PRIZE_AVAILABLE,
    PRIZE_CLAIMED,
    RANK_CHANGE,
    WINNER_FINALIZED,
)
from fairdraw.models import Base
from fairdraw.models.prize import DEFAULT_PRIZE_TABLE
from fairdraw.service import ContestLockRegistry, ContestService
from fairdraw.workflows import get_contest

CREATED_AT = datetime(2026, 10, 1, tzinfo=timezone.utc)
END_DATE = datetime(2026, 10, 31, 23, 59, 59, tzinfo=timezone.utc)
JOINED_AT = datetime(2026, 10, 10, tzinfo=timezone.utc)
CLOSED_AT = datetime(2026, 11, 1, tzinfo=timezone.utc)
REVEALED_AT = datetime(2026, 11, 1, 0, 10, tzinfo=timezone.utc)
CLAIMED_AT = datetime(2026, 11, 2, tzinfo=timezone.utc)
SEED = "service-seed"


class ContestServiceTestCase(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / "contest.db"
        self.engine = make_engine(f"sqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

        self.events = []
        self.fulfilled = []
        self.live_factors = {}
        self.service = ContestService(
            self.Session,
            settings=Settings(lock_timeout=5),
            event_sink=self.events.append,
            fulfiller=lambda prize: self.fulfilled.append(prize.id),
        )

    def tearDown(self):
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _open_contest(self, players=("A", "B", "C", "D", "E"), prize_count=3):
        contest = self.service.create_contest(
            "monthly-2026-10",
            prize_count=prize_count,
            end_date=END_DATE,
            now=CREATED_AT,
        )
        for key in players:
            self.service.join_roster(contest.id, key, now=JOINED_AT)
        return contest.id

    def _finalized(self, players=("A", "B", "C", "D", "E"), prize_count=3):
        contest_id = self._open_contest(players, prize_count)
        self.service.close_and_commit(contest_id, SEED, now=CLOSED_AT)
        winners = self.service.reveal_and_finalize(contest_id, SEED, now=REVEALED_AT)
        return contest_id, winners

    def _state(self, contest_id):
        with self.Session() as session:
            return get_contest(session, contest_id).state

    def _event_names(self):
        return [event.name for event in self.events]


class LifecycleTestCase(ContestServiceTestCase):
    def test_full_draw_publishes_winner_events(self):
        contest_id, winners = self._finalized()

        self.assertEqual(len(winners), 3)
        self.assertIs(self._state(contest_id), ContestState.FINALIZED)
        self.assertTrue(self.service.verify_draw(contest_id))

        self.assertEqual(self._event_names().count(WINNER_FINALIZED), 3)
        available = [e for e in self.events if e.name == PRIZE_AVAILABLE]
        self.assertEqual(len(available), 3)
        first = next(e for e in available if e.payload["position"] == 1)
        self.assertEqual(first.payload["participant_id"], winners[0].participant_id)
        self.assertEqual(first.payload["prize_id"], winners[0].prize_id)
        self.assertEqual(first.payload["reward_payload"], dict(DEFAULT_PRIZE_TABLE[0]))
        self.assertEqual(first.contest_id, contest_id)

    def test_default_prize_count_from_settings(self):
        service = ContestService(self.Session, settings=Settings(default_prize_count=4))
        contest = service.create_contest("defaults", end_date=END_DATE, now=CREATED_AT)
        self.assertEqual(contest.prize_count, 4)

    def test_verification_failure_is_audited_and_state_kept(self):
        contest_id = self._open_contest()
        self.service.close_and_commit(contest_id, SEED, now=CLOSED_AT)

        with self.assertLogs("fairdraw", level="ERROR"):
            with self.assertRaises(CommitVerificationError):
                self.service.reveal_and_finalize(contest_id, "not-the-seed", now=REVEALED_AT)

        self.assertIs(self._state(contest_id), ContestState.COMMITTED)
        actions = [entry["action"] for entry in self.service.get_audit_log(contest_id)]
        self.assertEqual(actions[-1], COMMIT_VERIFICATION_FAILED)
        self.assertNotIn(WINNER_FINALIZED, self._event_names())

        winners = self.service.reveal_and_finalize(contest_id, SEED, now=REVEALED_AT)
        self.assertEqual(len(winners), 3)
        self.assertIs(self._state(contest_id), ContestState.FINALIZED)

    def test_reveal_stamped_before_commit_rejected(self):
        contest_id = self._open_contest(players=("A",), prize_count=1)
        self.service.close_and_commit(contest_id, SEED, now=CLOSED_AT)

        with self.assertRaises(ValidationError):
            self.service.reveal_and_finalize(contest_id, SEED, now=CREATED_AT)

        self.assertIs(self._state(contest_id), ContestState.COMMITTED)
        self.assertNotIn(WINNER_FINALIZED, self._event_names())
        trail = list(self.service.get_audit_log(contest_id))
        self.assertEqual(
            [entry["action"] for entry in trail],
            [CONTEST_CREATED, PARTICIPANT_JOINED, COMMIT_PUBLISHED, ROSTER_FROZEN],
        )
        timestamps = [entry["timestamp"] for entry in trail]
        self.assertEqual(timestamps, sorted(timestamps))

    def test_audit_trail_is_restartable(self):
        contest_id, _ = self._finalized()
        trail = self.service.get_audit_log(contest_id)
        first = list(trail)
        second = list(trail)
        self.assertEqual(first, second)
        self.assertEqual(first[0]["action"], "contest_created")
        self.assertEqual(set(first[0]), {"id", "contest_id", "timestamp", "action", "data"})
        timestamps = [entry["timestamp"] for entry in first]
        self.assertEqual(timestamps, sorted(timestamps))

    def test_unknown_contest(self):
        with self.assertRaises(ContestNotFoundError):
            self.service.get_audit_log(404)
        with self.assertRaises(ContestNotFoundError):
            self.service.join_roster(404, "A", now=JOINED_AT)

    def test_storage_errors_become_infrastructure_errors(self):
        bare_engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        try:
            service = ContestService(get_sessionmaker(bare_engine), settings=Settings())
            with self.assertRaises(InfrastructureError):
                service.create_contest("no-tables", prize_count=1, end_date=END_DATE)
        finally:
            bare_engine.dispose()

    def test_failing_event_sink_does_not_break_draw(self):
        def broken_sink(notification):
            raise ConnectionError("socket closed")

        service = ContestService(self.Session, settings=Settings(), event_sink=broken_sink)
        contest = service.create_contest("sinkless", prize_count=1, end_date=END_DATE, now=CREATED_AT)
        service.join_roster(contest.id, "solo", now=JOINED_AT)
        service.close_and_commit(contest.id, SEED, now=CLOSED_AT)
        with self.assertLogs("fairdraw.events", level="ERROR"):
            winners = service.reveal_and_finalize(contest.id, SEED, now=REVEALED_AT)
        self.assertEqual([w.participant_id for w in winners], ["solo"])
        self.assertIs(self._state(contest.id), ContestState.FINALIZED)


class ClaimTestCase(ContestServiceTestCase):
    def test_claim_is_idempotent(self):
        _, winners = self._finalized()
        winner = winners[0]

        first = self.service.claim(winner.participant_id, winner.prize_id, now=CLAIMED_AT)
        second = self.service.claim(winner.participant_id, winner.prize_id, now=REVEALED_AT)

        self.assertTrue(first.claimed)
        self.assertEqual(first.claimed_at, CLAIMED_AT)
        self.assertEqual(second.claimed_at, first.claimed_at)
        self.assertEqual(self.fulfilled, [winner.prize_id])
        self.assertEqual(self._event_names().count(PRIZE_CLAIMED), 1)

    def test_claim_rejects_wrong_participant_and_unknown_prize(self):
        _, winners = self._finalized()
        other = winners[1].participant_id
        with self.assertRaises(PrizeNotFoundError):
            self.service.claim(other, winners[0].prize_id, now=CLAIMED_AT)
        with self.assertRaises(PrizeNotFoundError):
            self.service.claim("A", 99999, now=CLAIMED_AT)
        self.assertEqual(self.fulfilled, [])

    def test_claim_stamped_before_finalize_rejected(self):
        contest_id, winners = self._finalized()
        winner = winners[0]

        with self.assertRaises(ValidationError):
            self.service.claim(winner.participant_id, winner.prize_id, now=CLOSED_AT)
        self.assertEqual(self.fulfilled, [])
        self.assertNotIn(PRIZE_CLAIMED, self._event_names())

        prize = self.service.claim(winner.participant_id, winner.prize_id, now=CLAIMED_AT)
        self.assertEqual(prize.claimed_at, CLAIMED_AT)
        trail = list(self.service.get_audit_log(contest_id))
        self.assertEqual(trail[-1]["action"], PRIZE_CLAIMED_ACTION)
        timestamps = [entry["timestamp"] for entry in trail]
        self.assertEqual(timestamps, sorted(timestamps))

    def test_claimable_prizes(self):
        contest_id, winners = self._finalized()
        winner = winners[0]
        claimable = self.service.claimable_prizes(winner.participant_id, contest_id)
        self.assertEqual([p.id for p in claimable], [winner.prize_id])
        self.service.claim(winner.participant_id, winner.prize_id, now=CLAIMED_AT)
        self.assertEqual(self.service.claimable_prizes(winner.participant_id), [])

    def test_concurrent_claims_credit_once(self):
        contest_id, winners = self._finalized()
        winner = winners[0]
        results = []
        errors = []

        def worker():
            try:
                prize = self.service.claim(
                    winner.participant_id, winner.prize_id, now=CLAIMED_AT
                )
                results.append(prize.claimed_at)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 8)
        self.assertEqual(set(results), {CLAIMED_AT})
        self.assertEqual(self.fulfilled, [winner.prize_id])
        self.assertEqual(self._event_names().count(PRIZE_CLAIMED), 1)
        actions = [e["action"] for e in self.service.get_audit_log(contest_id)]
        self.assertEqual(actions.count(PRIZE_CLAIMED_ACTION), 1)


class ConcurrencyTestCase(ContestServiceTestCase):
    def test_concurrent_joins_get_unique_roster_slots(self):
        contest_id = self._open_contest(players=())
        errors = []

        def worker(i):
            try:
                self.service.join_roster(contest_id, f"player-{i}", now=JOINED_AT)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        with self.Session() as session:
            contest = get_contest(session, contest_id)
            roster = contest.roster_ids(session)
            self.assertEqual(len(roster), 20)
            self.assertEqual(set(roster), {f"player-{i}" for i in range(20)})
            indexes = sorted(p.roster_index for p in contest.participants)
            self.assertEqual(indexes, list(range(20)))

    def test_joins_racing_commit_stay_consistent_with_frozen_roster(self):
        contest_id = self._open_contest(players=("early",))
        joiners = 24
        start = threading.Barrier(joiners + 1)
        committed = threading.Event()
        outcomes = []
        errors = []

        def attempt(key):
            started_after_commit = committed.is_set()
            try:
                self.service.join_roster(contest_id, key, now=JOINED_AT)
            except RosterFrozenError:
                outcomes.append((key, started_after_commit, "frozen"))
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)
            else:
                outcomes.append((key, started_after_commit, "joined"))

        def racing_join(key):
            start.wait()
            attempt(key)

        def close():
            start.wait()
            try:
                self.service.close_and_commit(contest_id, SEED, now=CLOSED_AT)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)
            else:
                committed.set()

        threads = [threading.Thread(target=close)]
        threads += [
            threading.Thread(target=racing_join, args=(f"racer-{i}",)) for i in range(joiners)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        late = [threading.Thread(target=attempt, args=(f"late-{i}",)) for i in range(5)]
        for t in late:
            t.start()
        for t in late:
            t.join()

        self.assertEqual(errors, [])
        self.assertTrue(committed.is_set())
        self.assertEqual(len(outcomes), joiners + 5)

        joined = {key for key, _, outcome in outcomes if outcome == "joined"}
        after_commit = [outcome for _, started_after, outcome in outcomes if started_after]
        self.assertGreaterEqual(len(after_commit), 5)
        self.assertEqual(set(after_commit), {"frozen"})

        with self.Session() as session:
            contest = get_contest(session, contest_id)
            roster = contest.roster_ids(session)
            self.assertEqual(len(roster), len(set(roster)))
            self.assertEqual(set(roster), joined | {"early"})
            self.assertEqual(contest.roster_digest, roster_digest(roster))

        trail = list(self.service.get_audit_log(contest_id))
        frozen = next(entry for entry in trail if entry["action"] == ROSTER_FROZEN)
        self.assertEqual(frozen["data"]["participant_count"], len(roster))
        self.assertEqual(
            [entry["action"] for entry in trail].count(PARTICIPANT_JOINED), len(roster)
        )

    def test_lock_timeout_raises_infrastructure_error(self):
        registry = ContestLockRegistry()
        with registry.hold(1, timeout=1):
            with self.assertRaises(InfrastructureError):
                with registry.hold(1, timeout=0.01):
                    pass
            # Other contests are independent.
            with registry.hold(2, timeout=0.01):
                pass


class LeaderboardTestCase(ContestServiceTestCase):
    def setUp(self):
        super().setUp()
        self.service = ContestService(
            self.Session,
            settings=Settings(),
            event_sink=self.events.append,
            factors_provider=lambda key: self.live_factors[key],
        )

    def test_leaderboard_events_and_rank_changes(self):
        contest_id = self._open_contest(players=("A", "B", "C"))
        self.live_factors.update(
            {
                "A": ScoringFactors(achievements=3),
                "B": ScoringFactors(achievements=2),
                "C": ScoringFactors(achievements=1),
            }
        )
        now = datetime(2026, 10, 3, tzinfo=timezone.utc)

        board = self.service.get_leaderboard(contest_id, now=now)
        self.assertEqual([e.participant_id for e in board], ["A", "B", "C"])
        self.assertEqual(self._event_names(), [LEADERBOARD_UPDATE])

        self.events.clear()
        self.live_factors["C"] = ScoringFactors(achievements=10)
        board = self.service.get_leaderboard(contest_id, now=now, limit=2)
        self.assertEqual([e.participant_id for e in board], ["C", "A"])

        changes = [e.payload for e in self.events if e.name == RANK_CHANGE]
        self.assertEqual(
            [(c["participant_id"], c["previous_rank"], c["current_rank"]) for c in changes],
            [("C", 3, 1), ("A", 1, 2), ("B", 2, 3)],
        )
        update = self.events[-1]
        self.assertEqual(update.name, LEADERBOARD_UPDATE)
        self.assertEqual(
            update.payload["entries"],
            [
                {"rank": 1, "participant_id": "C", "total_score": 1000},
                {"rank": 2, "participant_id": "A", "total_score": 300},
            ],
        )

    def test_finalized_contest_emits_no_rank_changes(self):
        self.live_factors.update(
            {"A": ScoringFactors(achievements=2), "B": ScoringFactors(achievements=1)}
        )
        now = datetime(2026, 10, 3, tzinfo=timezone.utc)
        contest_id = self._open_contest(players=("A", "B"), prize_count=1)
        self.service.get_leaderboard(contest_id, now=now)

        self.service.close_and_commit(contest_id, SEED, now=CLOSED_AT)
        self.service.reveal_and_finalize(contest_id, SEED, now=REVEALED_AT)
        self.assertNotIn(contest_id, self.service._last_leaderboards)

        self.events.clear()
        self.live_factors["B"] = ScoringFactors(achievements=5)
        board = self.service.get_leaderboard(contest_id, now=now)
        self.live_factors["A"] = ScoringFactors(achievements=9)
        self.service.get_leaderboard(contest_id, now=now)

        self.assertEqual([e.participant_id for e in board], ["B", "A"])
        self.assertEqual(self._event_names(), [LEADERBOARD_UPDATE, LEADERBOARD_UPDATE])
        self.assertNotIn(contest_id, self.service._last_leaderboards)

    def test_concurrent_leaderboards_report_no_spurious_changes(self):
        self.live_factors.update(
            {
                "A": ScoringFactors(achievements=3),
                "B": ScoringFactors(achievements=2),
                "C": ScoringFactors(achievements=1),
            }
        )
        now = datetime(2026, 10, 3, tzinfo=timezone.utc)
        contest_id = self._open_contest(players=("A", "B", "C"))
        errors = []

        def worker():
            try:
                self.service.get_leaderboard(contest_id, now=now)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertNotIn(RANK_CHANGE, self._event_names())
        self.assertEqual(self._event_names().count(LEADERBOARD_UPDATE), 8)

    def test_compute_score(self):
        result = self.service.compute_score(
            ScoringFactors(achievements=2), now=datetime(2026, 10, 3, tzinfo=timezone.utc)
        )
        self.assertEqual(result.total_score, 200)


if __name__ == "__main__":
    unittest.main()
