"""
Auction Orchestrator

The facade external callers (admin UI, team-owner UI, HTTP routes) use to
drive an auction:

    create_round -> start_round -> open_player -> place_bid* ->
    sell | mark_unsold -> ... -> complete_round

Every mutating call runs through `_execute`, which:
1. Answers a repeated idempotency key from the stored result
2. Runs the operation in one transaction and records the key alongside it
3. Retries ConflictError, a lost SQLite write lock and a unique-slot race
   with bounded exponential backoff; every other error is rolled back and
   re-raised
4. Publishes the domain events only after the commit succeeded
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.config.settings import settings
from cricket_auction.errors import ConflictError, InvalidTransition, NotFoundError
from cricket_auction.orm.tournament import Tournament, Player, AuctionStatus
from cricket_auction.orm.auction import (
    AuctionRound, AuctionBid, SaleRecord, AuctionEventType
)
from cricket_auction.realtime.event_publisher import EventPublisher
from cricket_auction.services.ledger_store import LedgerStore
from cricket_auction.services.budget_tracker import BudgetTracker
from cricket_auction.services.bid_arbiter import BidArbiter
from cricket_auction.services.settlement_engine import SettlementEngine
from cricket_auction.services.auction_event_service import AuctionEventService, get_chain_head
from cricket_auction.services import idempotency_service
from cricket_auction.state_machines.round_state import RoundStateMachine

logger = logging.getLogger(__name__)


AUCTION_TRANSITIONS = {
    "start": ({AuctionStatus.NOT_STARTED.value}, AuctionStatus.ONGOING.value),
    "pause": ({AuctionStatus.ONGOING.value}, AuctionStatus.PAUSED.value),
    "resume": ({AuctionStatus.PAUSED.value}, AuctionStatus.ONGOING.value),
    "end": ({AuctionStatus.ONGOING.value, AuctionStatus.PAUSED.value}, AuctionStatus.COMPLETED.value),
}

# Models an idempotency record may point at
RESOURCE_MODELS = {
    model.__tablename__: model
    for model in (Tournament, Player, AuctionRound, AuctionBid, SaleRecord)
}


def is_lock_error(error: OperationalError) -> bool:
    message = str(error.orig).lower() if error.orig is not None else str(error).lower()
    return "database is locked" in message or "database table is locked" in message


def is_unique_violation(error: IntegrityError) -> bool:
    """Only unique-slot races are retryable; CHECK and foreign-key failures repeat every attempt."""
    message = str(error.orig).lower() if error.orig is not None else str(error).lower()
    return (
        "unique constraint" in message
        or "duplicate key" in message
        or "duplicate entry" in message
    )


class AuctionComponents:
    """Core components bound to one attempt of one operation."""

    def __init__(self, db: AsyncSession, events: AuctionEventService):
        self.events = events
        self.store = LedgerStore(db)
        self.budget = BudgetTracker(self.store)
        self.rounds = RoundStateMachine(self.store, events)
        self.arbiter = BidArbiter(self.store, self.budget, events)
        self.settlement = SettlementEngine(
            self.store, events, state_machine=self.rounds, budget=self.budget, arbiter=self.arbiter
        )


class AuctionOrchestrator:

    def __init__(
        self,
        db: AsyncSession,
        publisher: Optional[EventPublisher] = None,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None
    ):
        self.db = db
        self.publisher = publisher
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.AUCTION_MAX_CONFLICT_RETRIES)
        self.base_delay_ms = base_delay_ms if base_delay_ms is not None else settings.AUCTION_RETRY_BASE_DELAY_MS
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else settings.AUCTION_RETRY_MAX_DELAY_MS

    # =========================================================================
    # Execution core
    # =========================================================================

    def _backoff_seconds(self, attempt: int) -> float:
        return min(self.max_delay_ms, self.base_delay_ms * (2 ** (attempt - 1))) / 1000.0

    async def _rollback(self) -> None:
        # Detach first: a rollback expires attached rows, and rows already
        # handed to callers must stay readable without a lazy load
        self.db.expunge_all()
        await self.db.rollback()

    async def _replay(self, tournament_id: int, key: str, operation: str, fingerprint: str):
        record = await idempotency_service.find_record(self.db, tournament_id, key)
        if record is None:
            return None
        idempotency_service.check_fingerprint(record, operation, fingerprint)

        model = RESOURCE_MODELS[record.resource_type]
        resource = await LedgerStore(self.db).get_by_id(model, record.resource_id)
        if resource is None:
            raise NotFoundError(model.__name__, record.resource_id)
        return resource

    async def _execute(
        self,
        operation: str,
        tournament_id: int,
        fn: Callable[[AuctionComponents], Awaitable[Any]],
        idempotency_key: Optional[str] = None,
        request: Optional[Dict[str, Any]] = None
    ):
        fingerprint = None
        if idempotency_key:
            fingerprint = idempotency_service.compute_request_fingerprint(operation, request)

        attempt = 0
        while True:
            attempt += 1
            events = AuctionEventService(self.db)
            try:
                if idempotency_key:
                    replay = await self._replay(tournament_id, idempotency_key, operation, fingerprint)
                    if replay is not None:
                        await self.db.commit()
                        logger.info(
                            f"[IDEMPOTENT REPLAY] {operation} tournament={tournament_id} key={idempotency_key}"
                        )
                        return replay

                result = await fn(AuctionComponents(self.db, events))

                if idempotency_key:
                    await idempotency_service.record_result(
                        self.db, tournament_id, idempotency_key, operation, fingerprint,
                        result.__tablename__, result.id
                    )
                await self.db.commit()

            except ConflictError as e:
                await self._rollback()
                events.discard()
                await self._before_retry(operation, tournament_id, attempt, e)
                continue

            except OperationalError as e:
                await self._rollback()
                events.discard()
                if not is_lock_error(e):
                    raise
                await self._before_retry(
                    operation, tournament_id, attempt,
                    ConflictError("Auction state is locked by a concurrent writer")
                )
                continue

            except IntegrityError as e:
                await self._rollback()
                events.discard()
                if not is_unique_violation(e):
                    raise
                # A unique slot (round number, event sequence, idempotency key)
                # was taken by a concurrent writer; the retry re-reads it
                await self._before_retry(
                    operation, tournament_id, attempt,
                    ConflictError(
                        "Concurrent write to a unique auction record",
                        details={"constraint": str(e.orig) if e.orig is not None else None}
                    )
                )
                continue

            except Exception:
                await self._rollback()
                events.discard()
                raise

            committed = events.drain()
            logger.info(
                f"[OPERATION COMMITTED] {operation} tournament={tournament_id} "
                f"attempt={attempt} events={len(committed)}"
            )
            if self.publisher is not None and committed:
                await self.publisher.publish(committed)
            return result

    async def _before_retry(self, operation: str, tournament_id: int, attempt: int, error: ConflictError) -> None:
        if attempt >= self.max_attempts:
            logger.warning(
                f"[CONFLICT EXHAUSTED] {operation} tournament={tournament_id} "
                f"after {attempt} attempts: {error.message}"
            )
            raise error

        delay = self._backoff_seconds(attempt)
        logger.warning(
            f"[CONFLICT RETRY] {operation} tournament={tournament_id} attempt={attempt} "
            f"delay={delay:.3f}s: {error.message}"
        )
        await asyncio.sleep(delay)

    async def _read(self, fn: Callable[[AuctionComponents], Awaitable[Any]]):
        """Run a read view and end its transaction so no lock is held."""
        try:
            result = await fn(AuctionComponents(self.db, AuctionEventService(self.db)))
            await self.db.commit()
            return result
        except Exception:
            await self._rollback()
            raise

    # =========================================================================
    # Rounds
    # =========================================================================

    async def create_round(
        self,
        tournament_id: int,
        name: Optional[str] = None,
        player_ids: Iterable[int] = (),
        idempotency_key: Optional[str] = None
    ) -> AuctionRound:
        player_ids = list(player_ids)

        async def run(c: AuctionComponents):
            return await c.rounds.create_round(tournament_id, name=name, player_ids=player_ids)

        return await self._execute(
            "create_round", tournament_id, run, idempotency_key,
            {"name": name, "player_ids": player_ids}
        )

    async def bulk_create_rounds(self, tournament_id: int, rounds: List[Dict[str, Any]]) -> List[AuctionRound]:
        """
        Create several rounds atomically. Each item may carry `name` and
        `player_ids`; a bad item rejects the whole batch.
        """
        async def run(c: AuctionComponents):
            created = []
            for definition in rounds:
                created.append(await c.rounds.create_round(
                    tournament_id,
                    name=definition.get("name"),
                    player_ids=definition.get("player_ids") or ()
                ))
            return created

        return await self._execute("bulk_create_rounds", tournament_id, run)

    async def assign_players(self, tournament_id: int, round_id: int, player_ids: Iterable[int]) -> List[Player]:
        player_ids = list(player_ids)

        async def run(c: AuctionComponents):
            await c.store.get_round(round_id, tournament_id)
            return await c.rounds.assign_players(round_id, player_ids)

        return await self._execute("assign_players", tournament_id, run)

    async def start_round(self, tournament_id: int, round_id: int, idempotency_key: Optional[str] = None) -> AuctionRound:
        async def run(c: AuctionComponents):
            await c.store.get_round(round_id, tournament_id)
            return await c.rounds.start_round(round_id)

        return await self._execute("start_round", tournament_id, run, idempotency_key, {"round_id": round_id})

    async def open_player(
        self,
        tournament_id: int,
        round_id: int,
        player_id: int,
        idempotency_key: Optional[str] = None
    ) -> AuctionRound:
        async def run(c: AuctionComponents):
            await c.store.get_round(round_id, tournament_id)
            return await c.rounds.open_player(round_id, player_id)

        return await self._execute(
            "open_player", tournament_id, run, idempotency_key,
            {"round_id": round_id, "player_id": player_id}
        )

    async def close_player(self, tournament_id: int, round_id: int, idempotency_key: Optional[str] = None) -> AuctionRound:
        async def run(c: AuctionComponents):
            await c.store.get_round(round_id, tournament_id)
            return await c.rounds.close_player(round_id)

        return await self._execute("close_player", tournament_id, run, idempotency_key, {"round_id": round_id})

    async def complete_round(self, tournament_id: int, round_id: int, idempotency_key: Optional[str] = None) -> AuctionRound:
        async def run(c: AuctionComponents):
            await c.store.get_round(round_id, tournament_id)
            return await c.rounds.complete_round(round_id)

        return await self._execute("complete_round", tournament_id, run, idempotency_key, {"round_id": round_id})

    async def force_close_round(self, tournament_id: int, round_id: int, idempotency_key: Optional[str] = None) -> AuctionRound:
        async def run(c: AuctionComponents):
            await c.store.get_round(round_id, tournament_id)
            return await c.rounds.force_close_round(round_id)

        return await self._execute("force_close_round", tournament_id, run, idempotency_key, {"round_id": round_id})

    # =========================================================================
    # Bidding and settlement
    # =========================================================================

    async def place_bid(
        self,
        tournament_id: int,
        team_id: int,
        player_id: int,
        amount: int,
        idempotency_key: Optional[str] = None
    ) -> AuctionBid:
        async def run(c: AuctionComponents):
            return await c.arbiter.place_bid(tournament_id, team_id, player_id, amount)

        return await self._execute(
            "place_bid", tournament_id, run, idempotency_key,
            {"team_id": team_id, "player_id": player_id, "amount": amount}
        )

    async def sell(self, tournament_id: int, player_id: int, idempotency_key: Optional[str] = None) -> SaleRecord:
        async def run(c: AuctionComponents):
            return await c.settlement.sell(tournament_id, player_id)

        return await self._execute("sell", tournament_id, run, idempotency_key, {"player_id": player_id})

    async def mark_unsold(
        self,
        tournament_id: int,
        player_id: int,
        override: bool = False,
        idempotency_key: Optional[str] = None
    ) -> Player:
        async def run(c: AuctionComponents):
            return await c.settlement.mark_unsold(tournament_id, player_id, override=override)

        return await self._execute(
            "mark_unsold", tournament_id, run, idempotency_key,
            {"player_id": player_id, "override": override}
        )

    async def reselect(self, tournament_id: int, player_id: int, idempotency_key: Optional[str] = None) -> Player:
        async def run(c: AuctionComponents):
            return await c.settlement.reselect(tournament_id, player_id)

        return await self._execute("reselect", tournament_id, run, idempotency_key, {"player_id": player_id})

    # =========================================================================
    # Auction status
    # =========================================================================

    async def _change_auction_status(self, action: str, tournament_id: int, idempotency_key: Optional[str]) -> Tournament:
        allowed_from, target = AUCTION_TRANSITIONS[action]

        async def run(c: AuctionComponents):
            tournament = await c.store.get_tournament(tournament_id)
            if tournament.auction_status not in allowed_from:
                raise InvalidTransition(
                    f"Cannot {action} an auction that is {tournament.auction_status}",
                    details={"auction_status": tournament.auction_status, "allowed_from": sorted(allowed_from)}
                )

            if action == "end" and tournament.active_round_id is not None:
                await c.rounds.force_close_round(tournament.active_round_id)
                tournament = await c.store.get_tournament(tournament_id)
            elif action in ("pause", "resume") and tournament.active_round_id is not None:
                # Bids and openings write through the round row; a request
                # that read the old status misses this version and re-reads
                round_obj = await c.store.get_round(tournament.active_round_id)
                await c.store.update_if(AuctionRound, round_obj.id, round_obj.version)

            previous = tournament.auction_status
            tournament = await c.store.update_if(
                Tournament, tournament.id, tournament.version, auction_status=target
            )
            await c.events.append(
                tournament_id, AuctionEventType.AUCTION_STATUS_CHANGED, "tournament", tournament_id,
                {"from": previous, "to": target}
            )
            logger.info(f"[AUCTION STATUS] tournament={tournament_id} {previous} -> {target}")
            return tournament

        return await self._execute(f"{action}_auction", tournament_id, run, idempotency_key, {})

    async def start_auction(self, tournament_id: int, idempotency_key: Optional[str] = None) -> Tournament:
        return await self._change_auction_status("start", tournament_id, idempotency_key)

    async def pause_auction(self, tournament_id: int, idempotency_key: Optional[str] = None) -> Tournament:
        return await self._change_auction_status("pause", tournament_id, idempotency_key)

    async def resume_auction(self, tournament_id: int, idempotency_key: Optional[str] = None) -> Tournament:
        return await self._change_auction_status("resume", tournament_id, idempotency_key)

    async def end_auction(self, tournament_id: int, idempotency_key: Optional[str] = None) -> Tournament:
        return await self._change_auction_status("end", tournament_id, idempotency_key)

    # =========================================================================
    # Read views
    # =========================================================================

    async def live_state(self, tournament_id: int) -> Dict[str, Any]:
        """Snapshot of the auction as a bidder's screen needs it."""
        async def run(c: AuctionComponents):
            tournament = await c.store.get_tournament(tournament_id)
            round_obj = await c.store.active_round(tournament_id)

            current_player = None
            bids = []
            if round_obj is not None and round_obj.current_player_id is not None:
                current_player = await c.store.get_player(round_obj.current_player_id)
                bids = await c.store.active_bids(current_player.id)

            teams = []
            for team in await c.store.teams(tournament_id):
                check = await c.budget.verify_team(team.id)
                teams.append({
                    **team.to_dict(),
                    "committed_spend": await c.budget.committed_spend(team.id),
                    "held_amount": await c.budget.held_amount(team.id),
                    "max_allowed_bid": await c.budget.max_allowed_bid(team, tournament),
                    "is_consistent": check["is_consistent"],
                })

            head = await get_chain_head(tournament_id, self.db)
            return {
                "tournament": tournament.to_dict(),
                "active_round": round_obj.to_dict() if round_obj else None,
                "current_player": current_player.to_dict() if current_player else None,
                "highest_bid": bids[0].to_dict() if bids else None,
                "active_bids": [b.to_dict() for b in bids],
                "teams": teams,
                "rounds": [r.to_dict() for r in await c.store.rounds(tournament_id)],
                "last_event_sequence": head.sequence if head else 0,
            }

        return await self._read(run)

    async def team_summary(self, tournament_id: int, team_id: int) -> Dict[str, Any]:
        async def run(c: AuctionComponents):
            tournament = await c.store.get_tournament(tournament_id)
            team = await c.store.get_team(team_id, tournament_id)
            check = await c.budget.verify_team(team.id)
            return {
                "team": team.to_dict(),
                "players": [p.to_dict() for p in await c.store.team_players(team.id)],
                "committed_spend": await c.budget.committed_spend(team.id),
                "remaining_budget": check["derived_remaining"],
                "held_amount": await c.budget.held_amount(team.id),
                "max_allowed_bid": await c.budget.max_allowed_bid(team, tournament),
                "is_consistent": check["is_consistent"],
            }

        return await self._read(run)
