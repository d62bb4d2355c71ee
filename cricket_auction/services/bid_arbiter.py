"""
Bid Arbiter

Admits or rejects bid attempts against the round state and the bidding
team's budget, and resolves the winning bid when a player is settled.

Preconditions, in order:
1. The player is the one currently open in the tournament's ACTIVE round
   (NotOpenForBidding)
2. The amount beats the base price, the minimum valuation and the current
   highest ACTIVE bid; ties are rejected (BidTooLow)
3. The team has room in its squad (SquadFull) and can afford the amount
   after its other live reservations and its squad reserve
   (InsufficientBudget)

Admission bumps the round row's version first. Two teams racing for the
same player therefore cannot both commit: the loser hits ConflictError,
and on retry either supersedes the winner or is rejected as too low.
"""
import logging
import uuid
from typing import Optional

from cricket_auction.errors import NotOpenForBidding, BidTooLow, InsufficientBudget, SquadFull
from cricket_auction.orm.tournament import AuctionStatus, PlayerStatus
from cricket_auction.orm.auction import AuctionBid, AuctionRound, BidStatus, AuctionEventType
from cricket_auction.services.ledger_store import LedgerStore
from cricket_auction.services.budget_tracker import BudgetTracker
from cricket_auction.services.auction_event_service import AuctionEventService

logger = logging.getLogger(__name__)


class BidArbiter:

    def __init__(
        self,
        store: LedgerStore,
        budget: Optional[BudgetTracker] = None,
        events: Optional[AuctionEventService] = None
    ):
        self.store = store
        self.budget = budget or BudgetTracker(store)
        self.events = events or AuctionEventService(store.db)

    async def place_bid(
        self,
        tournament_id: int,
        team_id: int,
        player_id: int,
        amount: int,
        hold_id: Optional[str] = None
    ) -> AuctionBid:
        tournament = await self.store.get_tournament(tournament_id)
        team = await self.store.get_team(team_id, tournament_id)
        player = await self.store.get_player(player_id, tournament_id)

        # 1. Player must be the one under bid
        if tournament.auction_status != AuctionStatus.ONGOING.value:
            raise NotOpenForBidding(
                f"Auction is {tournament.auction_status}",
                details={"auction_status": tournament.auction_status}
            )

        round_obj = await self.store.active_round(tournament_id)
        if (
            round_obj is None
            or round_obj.current_player_id != player_id
            or player.status != PlayerStatus.IN_AUCTION.value
        ):
            raise NotOpenForBidding(
                f"Player {player_id} is not open for bidding",
                details={
                    "player_id": player_id,
                    "current_player_id": round_obj.current_player_id if round_obj else None,
                }
            )

        # 2. Amount must strictly beat every floor
        highest = await self.store.highest_active_bid(player_id)
        minimum = self._minimum_bid(tournament, player, highest)
        if amount < minimum:
            raise BidTooLow(
                f"Bid of {amount} is below the minimum acceptable bid of {minimum}",
                details={
                    "amount": amount,
                    "minimum_bid": minimum,
                    "highest_bid": highest.amount if highest else None,
                    "base_price": player.base_price,
                }
            )

        # 3. Squad size and budget
        if tournament.max_players_per_team and team.players_count >= tournament.max_players_per_team:
            raise SquadFull(
                f"Team {team.name} already has {team.players_count} players",
                details={
                    "players_count": team.players_count,
                    "max_players_per_team": tournament.max_players_per_team,
                }
            )

        spendable = await self.budget.spendable(team.id, exclude_player_id=player_id)
        max_allowed = await self.budget.max_allowed_bid(team, tournament, exclude_player_id=player_id)
        if amount > spendable or amount > max_allowed:
            raise InsufficientBudget(
                f"Team {team.name} cannot afford a bid of {amount}",
                details={
                    "amount": amount,
                    "spendable": spendable,
                    "max_allowed_bid": max_allowed,
                }
            )

        # Serialise bidders on this player through the round row
        await self.store.update_if(AuctionRound, round_obj.id, round_obj.version)

        superseded = []
        for previous in await self.store.active_bids(player_id):
            await self.store.update_if(
                AuctionBid, previous.id, previous.version, status=BidStatus.SUPERSEDED.value
            )
            superseded.append(previous.id)
        await self.budget.release_for_player(player_id)

        hold_id = hold_id or uuid.uuid4().hex
        bid = await self.store.insert(AuctionBid(
            tournament_id=tournament_id,
            round_id=round_obj.id,
            player_id=player_id,
            team_id=team_id,
            amount=amount,
            status=BidStatus.ACTIVE.value,
            hold_id=hold_id,
        ))
        await self.budget.reserve(tournament_id, team_id, player_id, amount, hold_id=hold_id, bid_id=bid.id)

        await self.events.append(
            tournament_id, AuctionEventType.BID_PLACED, "bid", bid.id,
            {
                "bid_id": bid.id,
                "round_id": round_obj.id,
                "player_id": player_id,
                "team_id": team_id,
                "amount": amount,
                "superseded_bid_ids": superseded,
            }
        )
        logger.info(
            f"[BID ACCEPTED] tournament={tournament_id} player={player_id} team={team_id} "
            f"amount={amount} superseded={superseded}"
        )
        return bid

    @staticmethod
    def _minimum_bid(tournament, player, highest: Optional[AuctionBid]) -> int:
        minimum = max(player.base_price + 1, tournament.min_player_points or 0, 1)
        if highest is not None:
            step = tournament.bid_increment if tournament.bid_increment else 1
            minimum = max(minimum, highest.amount + step)
        return minimum

    async def resolve_winner(self, player_id: int) -> Optional[AuctionBid]:
        """The single highest ACTIVE bid for a player, or None."""
        return await self.store.highest_active_bid(player_id)
