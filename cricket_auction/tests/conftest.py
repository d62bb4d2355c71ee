"""
Shared fixtures for the auction test suite.

Every test gets its own file-backed SQLite database configured exactly
like production (BEGIN IMMEDIATE per transaction), so concurrency tests
can drive several independent sessions against it.
"""
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, Any, List

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cricket_auction.database import configure_sqlite_engine
from cricket_auction.orm.base import Base
from cricket_auction.realtime.broadcast_adapter import BroadcastAdapter
from cricket_auction.realtime.event_publisher import EventPublisher
from cricket_auction.services import registration_service
from cricket_auction.services.auction_orchestrator import AuctionOrchestrator


class RecordingAdapter(BroadcastAdapter):
    """Collects published messages instead of delivering them."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        self.validate_message(message)
        self.messages.append({"channel": channel, **message})

    async def subscribe(self, channel: str):
        for message in list(self.messages):
            if message["channel"] == channel:
                yield message

    async def close(self) -> None:
        self.messages.clear()

    def event_types(self) -> List[str]:
        return [m["event_type"] for m in self.messages]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'auction_test.db'}",
        echo=False,
        connect_args={"timeout": 30.0}
    )
    configure_sqlite_engine(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def recorder() -> RecordingAdapter:
    return RecordingAdapter()


@pytest_asyncio.fixture
async def orchestrator(db_session, recorder) -> AuctionOrchestrator:
    return AuctionOrchestrator(
        db_session,
        publisher=EventPublisher(recorder),
        base_delay_ms=1,
        max_delay_ms=5
    )


async def seed_auction(
    session_factory,
    budget: int = 1000,
    base_prices=(100, 100, 100),
    team_names=("Team A", "Team B"),
    **tournament_settings
) -> SimpleNamespace:
    """Register a tournament with teams and players; returns their ids."""
    async with session_factory() as session:
        tournament = await registration_service.create_tournament(
            session, name="Club Premier League", auction_budget=budget, **tournament_settings
        )
        teams = [
            await registration_service.register_team(session, tournament.id, name=name)
            for name in team_names
        ]
        players = [
            await registration_service.register_player(
                session, tournament.id, name=f"Player {i + 1}", base_price=price
            )
            for i, price in enumerate(base_prices)
        ]
        return SimpleNamespace(
            tournament_id=tournament.id,
            team_ids=[t.id for t in teams],
            player_ids=[p.id for p in players],
        )


@pytest_asyncio.fixture
async def auction(session_factory) -> SimpleNamespace:
    return await seed_auction(session_factory)


async def open_player(orchestrator: AuctionOrchestrator, tournament_id: int, player_ids, player_id: int):
    """Create and start a round holding `player_ids`, then open `player_id`."""
    round_obj = await orchestrator.create_round(tournament_id, player_ids=player_ids)
    await orchestrator.start_round(tournament_id, round_obj.id)
    return await orchestrator.open_player(tournament_id, round_obj.id, player_id)


@pytest_asyncio.fixture
async def seed(session_factory):
    """Factory fixture: `await seed(budget=..., base_prices=..., min_players_per_team=...)`."""
    async def _seed(**kwargs) -> SimpleNamespace:
        return await seed_auction(session_factory, **kwargs)
    return _seed


@pytest_asyncio.fixture
async def put_under_bid():
    """Factory fixture: `await put_under_bid(orchestrator, tournament_id, player_ids, player_id)`."""
    return open_player
