"""
Budget Tracker

Derives each team's spendable balance from the ledger:

    committed_spend  = sum(sold_price) over the team's SOLD players
    remaining_budget = total_budget - committed_spend
    spendable        = remaining_budget - live HELD reservations

ACTIVE bids do not reduce the budget by themselves. The bid arbiter asks
for a time-boxed reservation for the leading bid; an expired reservation
simply stops counting (expiry is checked on read, there are no timers).
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, func

from cricket_auction.config.settings import settings
from cricket_auction.orm.tournament import Tournament, Team, Player, PlayerStatus
from cricket_auction.orm.auction import BudgetReservation, ReservationStatus
from cricket_auction.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class BudgetTracker:

    def __init__(self, store: LedgerStore):
        self.store = store

    # =========================================================================
    # Read path
    # =========================================================================

    async def committed_spend(self, team_id: int) -> int:
        result = await self.store.db.execute(
            select(func.coalesce(func.sum(Player.sold_price), 0))
            .where(
                Player.sold_team_id == team_id,
                Player.status == PlayerStatus.SOLD.value
            )
        )
        return int(result.scalar_one())

    async def remaining_budget(self, team_id: int) -> int:
        team = await self.store.get_team(team_id)
        return team.total_budget - await self.committed_spend(team_id)

    async def held_amount(
        self,
        team_id: int,
        exclude_player_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> int:
        """
        Sum of the team's live reservations.

        `exclude_player_id` leaves out the team's hold on the player being
        bid for, since a new bid replaces that hold rather than adding to it.
        """
        now = now or datetime.utcnow()
        stmt = select(func.coalesce(func.sum(BudgetReservation.amount), 0)).where(
            BudgetReservation.team_id == team_id,
            BudgetReservation.status == ReservationStatus.HELD.value,
            BudgetReservation.expires_at > now
        )
        if exclude_player_id is not None:
            stmt = stmt.where(BudgetReservation.player_id != exclude_player_id)
        result = await self.store.db.execute(stmt)
        return int(result.scalar_one())

    async def spendable(self, team_id: int, exclude_player_id: Optional[int] = None) -> int:
        remaining = await self.remaining_budget(team_id)
        held = await self.held_amount(team_id, exclude_player_id=exclude_player_id)
        return remaining - held

    async def can_afford(self, team_id: int, amount: int, exclude_player_id: Optional[int] = None) -> bool:
        return amount <= await self.spendable(team_id, exclude_player_id=exclude_player_id)

    async def max_allowed_bid(
        self,
        team: Team,
        tournament: Tournament,
        exclude_player_id: Optional[int] = None
    ) -> int:
        """
        Largest bid the team can place while still being able to fill its
        minimum squad at the tournament's minimum valuation.
        """
        available = await self.spendable(team.id, exclude_player_id=exclude_player_id)

        if settings.AUCTION_ENFORCE_SQUAD_RESERVE and tournament.min_players_per_team:
            # This purchase counts towards the squad, hence the extra -1
            still_needed = max(0, tournament.min_players_per_team - team.players_count - 1)
            available -= still_needed * (tournament.min_player_points or 0)

        return max(0, available)

    async def verify_team(self, team_id: int) -> Dict[str, Any]:
        """Compare the stored remaining_budget column with the derived value."""
        team = await self.store.get_team(team_id)
        derived = team.total_budget - await self.committed_spend(team_id)
        return {
            "team_id": team_id,
            "stored_remaining": team.remaining_budget,
            "derived_remaining": derived,
            "is_consistent": team.remaining_budget == derived and derived >= 0,
        }

    # =========================================================================
    # Reservations
    # =========================================================================

    async def reserve(
        self,
        tournament_id: int,
        team_id: int,
        player_id: int,
        amount: int,
        hold_id: Optional[str] = None,
        bid_id: Optional[int] = None,
        ttl_seconds: Optional[int] = None
    ) -> BudgetReservation:
        ttl = ttl_seconds if ttl_seconds is not None else settings.AUCTION_RESERVATION_TTL_SECONDS
        reservation = BudgetReservation(
            tournament_id=tournament_id,
            team_id=team_id,
            player_id=player_id,
            bid_id=bid_id,
            hold_id=hold_id or uuid.uuid4().hex,
            amount=amount,
            status=ReservationStatus.HELD.value,
            expires_at=datetime.utcnow() + timedelta(seconds=ttl),
        )
        await self.store.insert(reservation)
        logger.debug(f"Reserved {amount} for team {team_id} on player {player_id} (hold {reservation.hold_id})")
        return reservation

    async def release_for_player(
        self,
        player_id: int,
        except_hold_id: Optional[str] = None,
        status: ReservationStatus = ReservationStatus.RELEASED
    ) -> int:
        """Release every HELD reservation on a player. Returns how many were released."""
        released = 0
        for reservation in await self.store.held_reservations(player_id=player_id):
            if except_hold_id is not None and reservation.hold_id == except_hold_id:
                continue
            await self.store.update_if(
                BudgetReservation, reservation.id, reservation.version,
                status=status.value,
                released_at=datetime.utcnow()
            )
            released += 1
        return released

    async def convert(self, hold_id: Optional[str]) -> Optional[BudgetReservation]:
        """Make the winning hold permanent. Expired holds are converted too; the sale is what counts."""
        if not hold_id:
            return None
        reservation = await self.store.reservation_by_hold(hold_id)
        if reservation is None or reservation.status != ReservationStatus.HELD.value:
            return None
        return await self.store.update_if(
            BudgetReservation, reservation.id, reservation.version,
            status=ReservationStatus.CONVERTED.value,
            released_at=datetime.utcnow()
        )
