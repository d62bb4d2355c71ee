"""
Registration Service

Creates the tournaments, teams and players the auction core works on.
The core only reads these records; registration is the only writer of
new rows, and the tournament settings freeze once bidding has begun.
"""
import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.errors import InvalidTransition, RegistrationError
from cricket_auction.orm.tournament import Tournament, Team, Player, AuctionStatus, PlayerStatus
from cricket_auction.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

TOURNAMENT_SETTINGS = (
    "name",
    "auction_budget",
    "min_player_points",
    "bid_increment",
    "min_players_per_team",
    "max_players_per_team",
)


def _validate_settings(values: Dict[str, Any]) -> None:
    for field in ("auction_budget", "min_player_points", "bid_increment"):
        if values.get(field) is not None and values[field] < 0:
            raise RegistrationError(f"{field} cannot be negative", details={"field": field})

    low = values.get("min_players_per_team")
    high = values.get("max_players_per_team")
    if low is not None and low < 0:
        raise RegistrationError("min_players_per_team cannot be negative", details={"field": "min_players_per_team"})
    if high is not None and high < 1:
        raise RegistrationError("max_players_per_team must be at least 1", details={"field": "max_players_per_team"})
    if low is not None and high is not None and low > high:
        raise RegistrationError(
            "min_players_per_team cannot exceed max_players_per_team",
            details={"min_players_per_team": low, "max_players_per_team": high}
        )


# =============================================================================
# Tournaments
# =============================================================================

async def create_tournament(
    db: AsyncSession,
    name: str,
    auction_budget: int,
    min_player_points: int = 0,
    bid_increment: int = 0,
    min_players_per_team: Optional[int] = None,
    max_players_per_team: Optional[int] = None
) -> Tournament:
    values = {
        "name": name,
        "auction_budget": auction_budget,
        "min_player_points": min_player_points,
        "bid_increment": bid_increment,
        "min_players_per_team": min_players_per_team,
        "max_players_per_team": max_players_per_team,
    }
    _validate_settings(values)

    tournament = Tournament(auction_status=AuctionStatus.NOT_STARTED.value, **values)
    db.add(tournament)
    await db.commit()

    logger.info(f"Created tournament {tournament.id} '{name}' with budget {auction_budget}")
    return tournament


async def update_tournament(db: AsyncSession, tournament_id: int, **changes) -> Tournament:
    """
    Update tournament settings. Only allowed before the auction has started;
    later status changes go through the orchestrator's pause/resume/end.
    """
    store = LedgerStore(db)
    tournament = await store.get_tournament(tournament_id)

    if tournament.has_started or tournament.active_round_id is not None:
        raise InvalidTransition(
            f"Tournament {tournament_id} settings are frozen once the auction has started",
            details={"auction_status": tournament.auction_status}
        )

    unknown = set(changes) - set(TOURNAMENT_SETTINGS)
    if unknown:
        raise RegistrationError(f"Unknown tournament fields: {sorted(unknown)}")

    merged = {field: getattr(tournament, field) for field in TOURNAMENT_SETTINGS}
    merged.update({k: v for k, v in changes.items() if v is not None})
    _validate_settings(merged)

    try:
        tournament = await store.update_if(
            Tournament, tournament.id, tournament.version,
            **{k: v for k, v in changes.items() if v is not None}
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Updated tournament {tournament_id}: {sorted(changes)}")
    return tournament


async def get_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    return await LedgerStore(db).get_tournament(tournament_id)


async def list_tournaments(db: AsyncSession) -> List[Tournament]:
    result = await db.execute(select(Tournament).order_by(Tournament.id.asc()))
    return list(result.scalars().all())


# =============================================================================
# Teams
# =============================================================================

async def register_team(
    db: AsyncSession,
    tournament_id: int,
    name: str,
    owner_name: Optional[str] = None,
    owner_email: Optional[str] = None,
    total_budget: Optional[int] = None
) -> Team:
    """Register a bidding team. The budget defaults to the tournament's auction budget."""
    tournament = await LedgerStore(db).get_tournament(tournament_id)
    if tournament.has_started:
        raise RegistrationError(
            f"Teams cannot join tournament {tournament_id} after the auction has started",
            details={"auction_status": tournament.auction_status}
        )

    budget = tournament.auction_budget if total_budget is None else total_budget
    if budget < 0:
        raise RegistrationError("total_budget cannot be negative", details={"field": "total_budget"})

    team = Team(
        tournament_id=tournament_id,
        name=name,
        owner_name=owner_name,
        owner_email=owner_email,
        total_budget=budget,
        remaining_budget=budget,
        players_count=0
    )

    try:
        db.add(team)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise RegistrationError(
            f"Team '{name}' is already registered for tournament {tournament_id}",
            details={"name": name}
        )

    logger.info(f"Registered team {team.id} '{name}' for tournament {tournament_id} with budget {budget}")
    return team


async def list_teams(db: AsyncSession, tournament_id: int) -> List[Team]:
    await LedgerStore(db).get_tournament(tournament_id)
    return await LedgerStore(db).teams(tournament_id)


# =============================================================================
# Players
# =============================================================================

async def register_player(
    db: AsyncSession,
    tournament_id: int,
    name: str,
    base_price: int = 0,
    position: Optional[str] = None,
    batting_style: Optional[str] = None,
    bowling_style: Optional[str] = None
) -> Player:
    tournament = await LedgerStore(db).get_tournament(tournament_id)
    if tournament.auction_status == AuctionStatus.COMPLETED.value:
        raise RegistrationError(
            f"Auction for tournament {tournament_id} has ended",
            details={"auction_status": tournament.auction_status}
        )
    if base_price < 0:
        raise RegistrationError("base_price cannot be negative", details={"field": "base_price"})

    player = Player(
        tournament_id=tournament_id,
        name=name,
        base_price=base_price,
        position=position,
        batting_style=batting_style,
        bowling_style=bowling_style,
        status=PlayerStatus.AVAILABLE.value
    )

    try:
        db.add(player)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise RegistrationError(
            f"Player '{name}' is already registered for tournament {tournament_id}",
            details={"name": name}
        )

    logger.info(f"Registered player {player.id} '{name}' for tournament {tournament_id}")
    return player


async def list_players(db: AsyncSession, tournament_id: int, status: Optional[str] = None) -> List[Player]:
    if status is not None and status not in {s.value for s in PlayerStatus}:
        raise RegistrationError(
            f"Invalid status '{status}'",
            details={"allowed": [s.value for s in PlayerStatus]}
        )
    await LedgerStore(db).get_tournament(tournament_id)
    return await LedgerStore(db).players(tournament_id, status=status)
