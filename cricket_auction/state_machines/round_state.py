"""
Round State Machine

Governs the lifecycle of an auction round and its "player under bid"
pointer:

    Round:  PENDING -> ACTIVE -> COMPLETED (terminal)
    Player: AVAILABLE -> IN_AUCTION -> SOLD | UNSOLD,  UNSOLD -> AVAILABLE

At most one round per tournament is ACTIVE, guarded by a compare-and-set
on the tournament's `active_round_id`. At most one player per round is
under bid, guarded by a compare-and-set on the round's `current_player_id`.
Every operation runs in the caller's transaction.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from cricket_auction.errors import InvalidTransition, NotEligible
from cricket_auction.orm.tournament import Tournament, Player, AuctionStatus, PlayerStatus
from cricket_auction.orm.auction import AuctionRound, RoundStatus, AuctionEventType
from cricket_auction.services.ledger_store import LedgerStore
from cricket_auction.services.auction_event_service import AuctionEventService

logger = logging.getLogger(__name__)


ROUND_TRANSITIONS = {
    RoundStatus.PENDING.value: {RoundStatus.ACTIVE.value},
    RoundStatus.ACTIVE.value: {RoundStatus.COMPLETED.value},
    RoundStatus.COMPLETED.value: set(),
}

PLAYER_TRANSITIONS = {
    PlayerStatus.AVAILABLE.value: {PlayerStatus.IN_AUCTION.value},
    PlayerStatus.IN_AUCTION.value: {PlayerStatus.SOLD.value, PlayerStatus.UNSOLD.value},
    PlayerStatus.SOLD.value: set(),
    PlayerStatus.UNSOLD.value: {PlayerStatus.AVAILABLE.value},
}


def assert_round_transition(from_status: str, to_status: str) -> None:
    if to_status not in ROUND_TRANSITIONS.get(from_status, set()):
        raise InvalidTransition(
            f"Round cannot move from {from_status} to {to_status}",
            details={
                "from": from_status,
                "to": to_status,
                "allowed": sorted(ROUND_TRANSITIONS.get(from_status, set())),
            }
        )


def assert_player_transition(from_status: str, to_status: str) -> None:
    if to_status not in PLAYER_TRANSITIONS.get(from_status, set()):
        raise InvalidTransition(
            f"Player cannot move from {from_status} to {to_status}",
            details={
                "from": from_status,
                "to": to_status,
                "allowed": sorted(PLAYER_TRANSITIONS.get(from_status, set())),
            }
        )


class RoundStateMachine:

    def __init__(
        self,
        store: LedgerStore,
        events: Optional[AuctionEventService] = None,
        settlement=None
    ):
        self.store = store
        self.events = events or AuctionEventService(store.db)
        self._settlement = settlement

    @property
    def settlement(self):
        if self._settlement is None:
            # Import here to avoid circular imports
            from cricket_auction.services.settlement_engine import SettlementEngine
            self._settlement = SettlementEngine(self.store, self.events, state_machine=self)
        return self._settlement

    # =========================================================================
    # Round setup
    # =========================================================================

    async def create_round(
        self,
        tournament_id: int,
        name: Optional[str] = None,
        player_ids: Iterable[int] = ()
    ) -> AuctionRound:
        tournament = await self.store.get_tournament(tournament_id)
        if tournament.auction_status == AuctionStatus.COMPLETED.value:
            raise InvalidTransition(
                f"Auction for tournament {tournament_id} has ended",
                details={"auction_status": tournament.auction_status}
            )

        round_number = await self.store.next_round_number(tournament_id)
        round_obj = await self.store.insert(AuctionRound(
            tournament_id=tournament_id,
            round_number=round_number,
            name=name or f"Round {round_number}",
            status=RoundStatus.PENDING.value,
        ))

        player_ids = list(player_ids)
        if player_ids:
            await self.assign_players(round_obj.id, player_ids)

        await self.events.append(
            tournament_id, AuctionEventType.ROUND_CREATED, "round", round_obj.id,
            {"round_id": round_obj.id, "round_number": round_number, "player_ids": sorted(player_ids)}
        )
        logger.info(f"[ROUND CREATED] tournament={tournament_id} round={round_obj.id} number={round_number}")
        return round_obj

    async def assign_players(self, round_id: int, player_ids: Iterable[int]) -> List[Player]:
        round_obj = await self.store.get_round(round_id)
        if round_obj.status == RoundStatus.COMPLETED.value:
            raise InvalidTransition(
                f"Cannot assign players to completed round {round_id}",
                details={"round_status": round_obj.status}
            )

        assigned = []
        for player_id in player_ids:
            player = await self.store.get_player(player_id, round_obj.tournament_id)
            if player.status != PlayerStatus.AVAILABLE.value:
                raise NotEligible(
                    f"Player {player_id} is {player.status} and cannot be assigned to a round",
                    details={"player_id": player_id, "status": player.status}
                )
            if player.round_id == round_obj.id:
                assigned.append(player)
                continue
            if player.round_id is not None:
                raise NotEligible(
                    f"Player {player_id} already belongs to round {player.round_id}",
                    details={"player_id": player_id, "round_id": player.round_id}
                )
            assigned.append(await self.store.update_if(
                Player, player.id, player.version, round_id=round_obj.id
            ))

        logger.info(f"[PLAYERS ASSIGNED] round={round_id} players={[p.id for p in assigned]}")
        return assigned

    # =========================================================================
    # Round lifecycle
    # =========================================================================

    async def start_round(self, round_id: int) -> AuctionRound:
        round_obj = await self.store.get_round(round_id)
        assert_round_transition(round_obj.status, RoundStatus.ACTIVE.value)

        tournament = await self.store.get_tournament(round_obj.tournament_id)
        if tournament.auction_status in (AuctionStatus.COMPLETED.value, AuctionStatus.PAUSED.value):
            raise InvalidTransition(
                f"Cannot start a round while the auction is {tournament.auction_status}",
                details={"auction_status": tournament.auction_status}
            )
        if tournament.active_round_id is not None:
            raise InvalidTransition(
                f"Round {tournament.active_round_id} is already active",
                details={"active_round_id": tournament.active_round_id}
            )

        previous_status = tournament.auction_status
        new_status = AuctionStatus.ONGOING.value
        now = datetime.utcnow()

        # Tournament first: the active_round_id slot is the contended row
        await self.store.update_many_if([
            (Tournament, tournament.id, tournament.version,
             {"active_round_id": round_obj.id, "auction_status": new_status}),
            (AuctionRound, round_obj.id, round_obj.version,
             {"status": RoundStatus.ACTIVE.value, "started_at": now}),
        ])
        round_obj = await self.store.get_round(round_id)

        await self.events.append(
            tournament.id, AuctionEventType.ROUND_STARTED, "round", round_obj.id,
            {"round_id": round_obj.id, "round_number": round_obj.round_number}
        )
        if previous_status != new_status:
            await self.events.append(
                tournament.id, AuctionEventType.AUCTION_STATUS_CHANGED, "tournament", tournament.id,
                {"from": previous_status, "to": new_status}
            )

        logger.info(f"[TRANSITION SUCCESS] round={round_id} PENDING -> ACTIVE tournament={tournament.id}")
        return round_obj

    async def open_player(self, round_id: int, player_id: int) -> AuctionRound:
        round_obj = await self.store.get_round(round_id)
        if round_obj.status != RoundStatus.ACTIVE.value:
            raise InvalidTransition(
                f"Round {round_id} is {round_obj.status}, players can only be opened in an ACTIVE round",
                details={"round_status": round_obj.status}
            )

        tournament = await self.store.get_tournament(round_obj.tournament_id)
        if tournament.auction_status != AuctionStatus.ONGOING.value:
            raise InvalidTransition(
                f"Auction is {tournament.auction_status}",
                details={"auction_status": tournament.auction_status}
            )

        if round_obj.current_player_id is not None:
            raise InvalidTransition(
                f"Player {round_obj.current_player_id} is already open for bidding",
                details={"current_player_id": round_obj.current_player_id}
            )

        player = await self.store.get_player(player_id, round_obj.tournament_id)
        assert_player_transition(player.status, PlayerStatus.IN_AUCTION.value)
        if player.round_id is not None and player.round_id != round_obj.id:
            raise InvalidTransition(
                f"Player {player_id} belongs to round {player.round_id}",
                details={"player_round_id": player.round_id}
            )

        await self.store.update_many_if([
            (AuctionRound, round_obj.id, round_obj.version, {"current_player_id": player.id}),
            (Player, player.id, player.version,
             {"status": PlayerStatus.IN_AUCTION.value, "round_id": round_obj.id}),
        ])
        round_obj = await self.store.get_round(round_id)

        await self.events.append(
            round_obj.tournament_id, AuctionEventType.PLAYER_OPENED, "player", player.id,
            {"round_id": round_obj.id, "player_id": player.id, "base_price": player.base_price}
        )
        logger.info(f"[PLAYER OPENED] round={round_id} player={player_id}")
        return round_obj

    async def close_player(self, round_id: int, expected_version: Optional[int] = None) -> AuctionRound:
        """
        Clear the round's player-under-bid pointer.

        Settlement passes the round version it read before deciding the
        outcome, so a bid that slipped in meanwhile turns into a conflict.
        """
        round_obj = await self.store.get_round(round_id)
        if round_obj.current_player_id is None:
            raise InvalidTransition(
                f"Round {round_id} has no player open for bidding",
                details={"round_id": round_id}
            )

        player = await self.store.get_player(round_obj.current_player_id)
        if player.status == PlayerStatus.IN_AUCTION.value:
            raise InvalidTransition(
                f"Player {player.id} must be sold or marked unsold before closing",
                details={"player_id": player.id, "status": player.status}
            )

        version = expected_version if expected_version is not None else round_obj.version
        round_obj = await self.store.update_if(AuctionRound, round_obj.id, version, current_player_id=None)

        logger.info(f"[PLAYER CLOSED] round={round_id} player={player.id}")
        return round_obj

    async def complete_round(self, round_id: int) -> AuctionRound:
        round_obj = await self.store.get_round(round_id)
        assert_round_transition(round_obj.status, RoundStatus.COMPLETED.value)

        if round_obj.current_player_id is not None:
            raise InvalidTransition(
                f"Player {round_obj.current_player_id} is still open for bidding",
                details={"current_player_id": round_obj.current_player_id}
            )

        players = await self.store.players_in_round(round_obj.id)
        pending = [
            p.id for p in players
            if p.status not in (PlayerStatus.SOLD.value, PlayerStatus.UNSOLD.value)
        ]
        if pending:
            raise InvalidTransition(
                f"Round {round_id} still has players awaiting auction",
                details={"pending_player_ids": pending}
            )

        return await self._finish(round_obj, force_closed=False, released=[])

    async def force_close_round(self, round_id: int) -> AuctionRound:
        """
        Administrative close. The player under bid (if any) is marked UNSOLD
        with its bids superseded, and players never opened go back to the pool.
        """
        round_obj = await self.store.get_round(round_id)
        assert_round_transition(round_obj.status, RoundStatus.COMPLETED.value)

        if round_obj.current_player_id is not None:
            await self.settlement.mark_unsold(
                round_obj.tournament_id, round_obj.current_player_id, override=True
            )
            round_obj = await self.store.get_round(round_id)

        released = []
        for player in await self.store.players_in_round(round_obj.id):
            if player.status == PlayerStatus.AVAILABLE.value:
                await self.store.update_if(Player, player.id, player.version, round_id=None)
                released.append(player.id)

        logger.warning(f"[ROUND FORCE CLOSE] round={round_id} released_players={released}")
        return await self._finish(round_obj, force_closed=True, released=released)

    async def _finish(self, round_obj: AuctionRound, force_closed: bool, released: List[int]) -> AuctionRound:
        tournament = await self.store.get_tournament(round_obj.tournament_id)
        changes = [
            (AuctionRound, round_obj.id, round_obj.version, {
                "status": RoundStatus.COMPLETED.value,
                "completed_at": datetime.utcnow(),
                "force_closed": force_closed,
            }),
        ]
        if tournament.active_round_id == round_obj.id:
            changes.append((Tournament, tournament.id, tournament.version, {"active_round_id": None}))

        await self.store.update_many_if(changes)
        round_obj = await self.store.get_round(round_obj.id)

        await self.events.append(
            round_obj.tournament_id, AuctionEventType.ROUND_COMPLETED, "round", round_obj.id,
            {
                "round_id": round_obj.id,
                "round_number": round_obj.round_number,
                "force_closed": force_closed,
                "released_player_ids": released,
            }
        )
        logger.info(
            f"[TRANSITION SUCCESS] round={round_obj.id} ACTIVE -> COMPLETED "
            f"force_closed={force_closed}"
        )
        return round_obj
