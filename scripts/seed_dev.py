from datetime import timedelta

from fairdraw.config import configure_logging
from fairdraw.db.engine import get_sessionmaker, make_engine
from fairdraw.db.utils import utcnow
from fairdraw.draw.commit_reveal import generate_secret_seed
from fairdraw.models import Base
from fairdraw.service import ContestService


def main() -> None:
    """Seed the development database with a demo contest and run its draw."""
    configure_logging()
    engine = make_engine()

    # Drop and recreate all tables. The audit log references contests with
    # ON DELETE RESTRICT, so SQLite foreign key checks are disabled for the reset.
    is_sqlite = engine.dialect.name == "sqlite"
    with engine.connect() as conn:
        if is_sqlite:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if is_sqlite:
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    service = ContestService(get_sessionmaker(engine), event_sink=print)

    now = utcnow()
    contest = service.create_contest(
        f"monthly-{now:%Y-%m}",
        title="Monthly Cookie Contest",
        end_date=now + timedelta(days=1),
        now=now,
    )

    for idx in range(25):
        service.join_roster(
            contest.id,
            f"player_{idx:02d}",
            metrics_snapshot={
                "totalCookies": 10 ** (idx % 9) * (idx + 1),
                "achievementCount": idx % 12,
                "buildings": {"cursor": idx, "grandma": idx // 2},
                "cookiesPerSecond": idx * 3.5,
                "activeTime": 600 * idx,
                "clicks": 100 * idx,
                "level": idx // 3,
                "dailyStreak": idx % 8,
            },
            now=now + timedelta(minutes=idx),
        )

    for entry in service.get_leaderboard(contest.id, limit=5, now=now):
        print(f"#{entry.rank} {entry.participant_id}: {entry.score.total_score}")

    # The operator keeps the seed private until the reveal.
    secret_seed = generate_secret_seed()
    closed_at = now + timedelta(days=1)
    commit = service.close_and_commit(contest.id, secret_seed, now=closed_at)
    print("Commit hash:", commit.commit_hash)

    winners = service.reveal_and_finalize(
        contest.id, secret_seed, now=closed_at + timedelta(minutes=5)
    )
    for winner in winners:
        print(f"Position {winner.position}: {winner.participant_id} (prize {winner.prize_id})")

    print("Draw verified:", service.verify_draw(contest.id))


if __name__ == "__main__":
    main()
