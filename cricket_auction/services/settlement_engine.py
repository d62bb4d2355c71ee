"""
Settlement Engine

Finalizes the player currently under bid as SOLD or UNSOLD, and handles
reselection of UNSOLD players.

A sale touches the player, the winning team, the winning bid and the
round in one transaction, each through a compare-and-set on the version
read at the start. If any of them moved (a late bid bumped the round, a
concurrent sale debited the team) the whole sale is rejected with
ConflictError and nothing is applied.
"""
import logging
from typing import Optional

from cricket_auction.errors import InvalidTransition, NoBidsPresent, NotEligible, InsufficientBudget
from cricket_auction.orm.tournament import Team, Player, PlayerStatus
from cricket_auction.orm.auction import (
    AuctionBid, AuctionRound, SaleRecord, BidStatus, AuctionEventType
)
from cricket_auction.services.ledger_store import LedgerStore
from cricket_auction.services.budget_tracker import BudgetTracker
from cricket_auction.services.bid_arbiter import BidArbiter
from cricket_auction.services.auction_event_service import AuctionEventService
from cricket_auction.state_machines.round_state import RoundStateMachine, assert_player_transition

logger = logging.getLogger(__name__)


class SettlementEngine:

    def __init__(
        self,
        store: LedgerStore,
        events: Optional[AuctionEventService] = None,
        state_machine: Optional[RoundStateMachine] = None,
        budget: Optional[BudgetTracker] = None,
        arbiter: Optional[BidArbiter] = None
    ):
        self.store = store
        self.events = events or AuctionEventService(store.db)
        self.state_machine = state_machine or RoundStateMachine(store, self.events, settlement=self)
        self.budget = budget or BudgetTracker(store)
        self.arbiter = arbiter or BidArbiter(store, self.budget, self.events)

    async def _open_round_for(self, tournament_id: int, player: Player) -> AuctionRound:
        round_obj = await self.store.active_round(tournament_id)
        if round_obj is None or round_obj.current_player_id != player.id:
            raise InvalidTransition(
                f"Player {player.id} is not open in the active round",
                details={
                    "player_id": player.id,
                    "current_player_id": round_obj.current_player_id if round_obj else None,
                }
            )
        return round_obj

    async def sell(self, tournament_id: int, player_id: int) -> SaleRecord:
        player = await self.store.get_player(player_id, tournament_id)
        assert_player_transition(player.status, PlayerStatus.SOLD.value)
        round_obj = await self._open_round_for(tournament_id, player)

        winner = await self.arbiter.resolve_winner(player_id)
        if winner is None:
            raise NoBidsPresent(
                f"Player {player_id} has no active bids",
                details={"player_id": player_id}
            )

        team = await self.store.get_team(winner.team_id, tournament_id)
        if team.remaining_budget - winner.amount < 0:
            raise InsufficientBudget(
                f"Team {team.name} cannot cover a sale of {winner.amount}",
                details={"remaining_budget": team.remaining_budget, "amount": winner.amount}
            )

        await self.store.update_many_if([
            (Player, player.id, player.version, {
                "status": PlayerStatus.SOLD.value,
                "sold_team_id": team.id,
                "sold_price": winner.amount,
            }),
            (Team, team.id, team.version, {
                "remaining_budget": team.remaining_budget - winner.amount,
                "players_count": team.players_count + 1,
            }),
            (AuctionBid, winner.id, winner.version, {"status": BidStatus.WON.value}),
        ])
        await self.state_machine.close_player(round_obj.id, expected_version=round_obj.version)

        sale = await self.store.insert(SaleRecord(
            tournament_id=tournament_id,
            round_id=round_obj.id,
            player_id=player.id,
            team_id=team.id,
            bid_id=winner.id,
            amount=winner.amount,
        ))
        await self.budget.convert(winner.hold_id)
        await self.budget.release_for_player(player.id, except_hold_id=winner.hold_id)

        await self.events.append(
            tournament_id, AuctionEventType.PLAYER_SOLD, "player", player.id,
            {
                "sale_id": sale.id,
                "round_id": round_obj.id,
                "player_id": player.id,
                "team_id": team.id,
                "bid_id": winner.id,
                "amount": winner.amount,
            }
        )
        logger.info(
            f"[PLAYER SOLD] tournament={tournament_id} round={round_obj.id} player={player.id} "
            f"team={team.id} amount={winner.amount}"
        )
        return sale

    async def mark_unsold(self, tournament_id: int, player_id: int, override: bool = False) -> Player:
        """
        Mark the player under bid UNSOLD. Without `override` the player must
        have no ACTIVE bid; with it, any ACTIVE bids are superseded.
        """
        player = await self.store.get_player(player_id, tournament_id)
        assert_player_transition(player.status, PlayerStatus.UNSOLD.value)
        round_obj = await self._open_round_for(tournament_id, player)

        active = await self.store.active_bids(player_id)
        if active and not override:
            raise NotEligible(
                f"Player {player_id} has {len(active)} active bid(s); sell or use the override",
                details={"player_id": player_id, "active_bid_ids": [b.id for b in active]}
            )

        await self.store.update_many_if(
            [(AuctionBid, bid.id, bid.version, {"status": BidStatus.SUPERSEDED.value}) for bid in active]
            + [(Player, player.id, player.version, {"status": PlayerStatus.UNSOLD.value})]
        )
        await self.budget.release_for_player(player.id)
        await self.state_machine.close_player(round_obj.id, expected_version=round_obj.version)

        player = await self.store.get_player(player_id)
        await self.events.append(
            tournament_id, AuctionEventType.PLAYER_UNSOLD, "player", player.id,
            {
                "round_id": round_obj.id,
                "player_id": player.id,
                "override": override,
                "superseded_bid_ids": [b.id for b in active],
            }
        )
        logger.info(
            f"[PLAYER UNSOLD] tournament={tournament_id} round={round_obj.id} player={player.id} "
            f"override={override}"
        )
        return player

    async def reselect(self, tournament_id: int, player_id: int) -> Player:
        """Return an UNSOLD player to the pool with every sale artifact cleared."""
        player = await self.store.get_player(player_id, tournament_id)
        if player.status != PlayerStatus.UNSOLD.value:
            raise NotEligible(
                f"Player {player_id} is {player.status}; only UNSOLD players can be reselected",
                details={"player_id": player_id, "status": player.status}
            )

        previous_round = player.round_id
        player = await self.store.update_if(
            Player, player.id, player.version,
            status=PlayerStatus.AVAILABLE.value,
            sold_price=None,
            sold_team_id=None,
            round_id=None
        )

        await self.events.append(
            tournament_id, AuctionEventType.PLAYER_RESELECTED, "player", player.id,
            {"player_id": player.id, "previous_round_id": previous_round}
        )
        logger.info(f"[PLAYER RESELECTED] tournament={tournament_id} player={player.id}")
        return player
