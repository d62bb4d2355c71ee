"""
Ledger Store

Durable, version-checked access to tournaments, teams, players, rounds,
bids and reservations. Every write goes through `update_if`, a single
conditional UPDATE keyed on (id, version). A stale version matches zero
rows and raises ConflictError; the caller re-reads and retries.

The store never commits. Transaction boundaries belong to the
orchestrator, so several `update_if` calls made during one operation
either all commit or all roll back together.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.errors import ConflictError, NotFoundError
from cricket_auction.orm.tournament import Tournament, Team, Player, PlayerStatus
from cricket_auction.orm.auction import (
    AuctionRound, AuctionBid, BudgetReservation, RoundStatus, BidStatus, ReservationStatus
)

logger = logging.getLogger(__name__)


class LedgerStore:
    """Session-bound access to auction state with compare-and-set writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    async def _get(self, model, entity_id: int, resource: str, tournament_id: Optional[int] = None):
        # populate_existing: always reflect the latest committed row, never
        # a stale identity-map copy from earlier in the session
        result = await self.db.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        )
        entity = result.scalar_one_or_none()
        if entity is None:
            raise NotFoundError(resource, entity_id)

        if tournament_id is not None:
            owner = entity.id if model is Tournament else entity.tournament_id
            if owner != tournament_id:
                raise NotFoundError(resource, entity_id)

        return entity

    async def get_tournament(self, tournament_id: int) -> Tournament:
        return await self._get(Tournament, tournament_id, "Tournament")

    async def get_team(self, team_id: int, tournament_id: Optional[int] = None) -> Team:
        return await self._get(Team, team_id, "Team", tournament_id)

    async def get_player(self, player_id: int, tournament_id: Optional[int] = None) -> Player:
        return await self._get(Player, player_id, "Player", tournament_id)

    async def get_round(self, round_id: int, tournament_id: Optional[int] = None) -> AuctionRound:
        return await self._get(AuctionRound, round_id, "Round", tournament_id)

    async def get_bid(self, bid_id: int) -> AuctionBid:
        return await self._get(AuctionBid, bid_id, "Bid")

    async def get_by_id(self, model, entity_id: int):
        """Load any ledger row by primary key, None when absent."""
        result = await self.db.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Compare-and-set writes
    # =========================================================================

    async def update_if(self, model, entity_id: int, expected_version: int, **values):
        """
        Apply `values` to one row only if its version still equals
        `expected_version`. The version is bumped in the same statement.

        Returns:
            The refreshed entity

        Raises:
            ConflictError: If the row changed (or vanished) since it was read
        """
        result = await self.db.execute(
            update(model)
            .where(model.id == entity_id, model.version == expected_version)
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.info(
                f"[CAS MISS] {model.__tablename__}#{entity_id} expected version {expected_version}"
            )
            raise ConflictError(
                f"{model.__name__} {entity_id} was modified concurrently",
                details={
                    "entity": model.__tablename__,
                    "id": entity_id,
                    "expected_version": expected_version,
                }
            )

        return await self.get_by_id(model, entity_id)

    async def update_many_if(self, changes: Iterable[Tuple[Type, int, int, Dict[str, Any]]]) -> List[Any]:
        """
        Apply several compare-and-set updates inside the caller's transaction.

        Any miss raises ConflictError; the caller must roll back so that
        none of the earlier updates in the batch survive.
        """
        updated = []
        for model, entity_id, expected_version, values in changes:
            updated.append(await self.update_if(model, entity_id, expected_version, **values))
        return updated

    async def insert(self, entity):
        self.db.add(entity)
        await self.db.flush()
        return entity

    # =========================================================================
    # Query helpers
    # =========================================================================

    async def active_bids(self, player_id: int) -> List[AuctionBid]:
        """ACTIVE bids for a player, highest first."""
        result = await self.db.execute(
            select(AuctionBid)
            .where(
                AuctionBid.player_id == player_id,
                AuctionBid.status == BidStatus.ACTIVE.value
            )
            .order_by(AuctionBid.amount.desc(), AuctionBid.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def highest_active_bid(self, player_id: int) -> Optional[AuctionBid]:
        bids = await self.active_bids(player_id)
        return bids[0] if bids else None

    async def bids_for_player(self, player_id: int) -> List[AuctionBid]:
        result = await self.db.execute(
            select(AuctionBid)
            .where(AuctionBid.player_id == player_id)
            .order_by(AuctionBid.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def active_round(self, tournament_id: int) -> Optional[AuctionRound]:
        result = await self.db.execute(
            select(AuctionRound)
            .where(
                AuctionRound.tournament_id == tournament_id,
                AuctionRound.status == RoundStatus.ACTIVE.value
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def rounds(self, tournament_id: int) -> List[AuctionRound]:
        result = await self.db.execute(
            select(AuctionRound)
            .where(AuctionRound.tournament_id == tournament_id)
            .order_by(AuctionRound.round_number.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def next_round_number(self, tournament_id: int) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.max(AuctionRound.round_number), 0))
            .where(AuctionRound.tournament_id == tournament_id)
        )
        return int(result.scalar_one()) + 1

    async def players_in_round(self, round_id: int) -> List[Player]:
        result = await self.db.execute(
            select(Player)
            .where(Player.round_id == round_id)
            .order_by(Player.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def players(self, tournament_id: int, status: Optional[str] = None) -> List[Player]:
        stmt = select(Player).where(Player.tournament_id == tournament_id)
        if status is not None:
            stmt = stmt.where(Player.status == status)
        result = await self.db.execute(
            stmt.order_by(Player.id.asc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def team_players(self, team_id: int) -> List[Player]:
        """Players won by a team."""
        result = await self.db.execute(
            select(Player)
            .where(
                Player.sold_team_id == team_id,
                Player.status == PlayerStatus.SOLD.value
            )
            .order_by(Player.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def teams(self, tournament_id: int) -> List[Team]:
        result = await self.db.execute(
            select(Team)
            .where(Team.tournament_id == tournament_id)
            .order_by(Team.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def held_reservations(
        self,
        team_id: Optional[int] = None,
        player_id: Optional[int] = None
    ) -> List[BudgetReservation]:
        """HELD reservations (expired ones included) for a team and/or player."""
        stmt = select(BudgetReservation).where(
            BudgetReservation.status == ReservationStatus.HELD.value
        )
        if team_id is not None:
            stmt = stmt.where(BudgetReservation.team_id == team_id)
        if player_id is not None:
            stmt = stmt.where(BudgetReservation.player_id == player_id)
        result = await self.db.execute(
            stmt.order_by(BudgetReservation.id.asc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def reservation_by_hold(self, hold_id: str) -> Optional[BudgetReservation]:
        result = await self.db.execute(
            select(BudgetReservation)
            .where(BudgetReservation.hold_id == hold_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
