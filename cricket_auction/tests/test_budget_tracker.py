"""
Unit Tests for the Budget Tracker

remaining_budget must reflect SOLD players only; reservations are the
sole way an in-flight bid holds budget, and they lapse on expiry.
"""
import pytest

from cricket_auction.orm.tournament import Player, PlayerStatus
from cricket_auction.orm.auction import ReservationStatus
from cricket_auction.services.budget_tracker import BudgetTracker
from cricket_auction.services.ledger_store import LedgerStore


async def _mark_sold(store: LedgerStore, player_id: int, team_id: int, price: int):
    player = await store.get_player(player_id)
    await store.update_if(
        Player, player.id, player.version,
        status=PlayerStatus.SOLD.value, sold_team_id=team_id, sold_price=price
    )


@pytest.mark.asyncio
async def test_remaining_budget_counts_only_sold_players(db_session, auction):
    store = LedgerStore(db_session)
    budget = BudgetTracker(store)
    team_id = auction.team_ids[0]

    assert await budget.remaining_budget(team_id) == 1000

    await _mark_sold(store, auction.player_ids[0], team_id, 250)
    await _mark_sold(store, auction.player_ids[1], auction.team_ids[1], 400)

    assert await budget.committed_spend(team_id) == 250
    assert await budget.remaining_budget(team_id) == 750
    assert await budget.remaining_budget(auction.team_ids[1]) == 600


@pytest.mark.asyncio
async def test_held_amount_ignores_expired_and_excluded_holds(db_session, auction):
    store = LedgerStore(db_session)
    budget = BudgetTracker(store)
    team_id = auction.team_ids[0]
    first, second, third = auction.player_ids

    await budget.reserve(auction.tournament_id, team_id, first, 200)
    await budget.reserve(auction.tournament_id, team_id, second, 300)
    await budget.reserve(auction.tournament_id, team_id, third, 100, ttl_seconds=-1)

    assert await budget.held_amount(team_id) == 500
    assert await budget.held_amount(team_id, exclude_player_id=first) == 300
    assert await budget.spendable(team_id) == 500
    assert await budget.can_afford(team_id, 500) is True
    assert await budget.can_afford(team_id, 501) is False
    # The team's own hold on the player being bid for is replaced, not added
    assert await budget.can_afford(team_id, 700, exclude_player_id=first) is True


@pytest.mark.asyncio
async def test_release_and_convert(db_session, auction):
    store = LedgerStore(db_session)
    budget = BudgetTracker(store)
    player_id = auction.player_ids[0]

    winner = await budget.reserve(auction.tournament_id, auction.team_ids[0], player_id, 300, hold_id="hold-win")
    await budget.reserve(auction.tournament_id, auction.team_ids[1], player_id, 250, hold_id="hold-lose")

    converted = await budget.convert("hold-win")
    released = await budget.release_for_player(player_id, except_hold_id="hold-win")

    assert converted.status == ReservationStatus.CONVERTED.value
    assert released == 1
    assert (await store.reservation_by_hold("hold-lose")).status == ReservationStatus.RELEASED.value
    assert (await store.reservation_by_hold(winner.hold_id)).status == ReservationStatus.CONVERTED.value
    assert await budget.held_amount(auction.team_ids[1]) == 0
    assert await budget.convert("hold-win") is None


@pytest.mark.asyncio
async def test_max_allowed_bid_keeps_squad_reserve(db_session, seed):
    ids = await seed(budget=1000, min_player_points=100, min_players_per_team=3)
    store = LedgerStore(db_session)
    budget = BudgetTracker(store)
    tournament = await store.get_tournament(ids.tournament_id)
    team = await store.get_team(ids.team_ids[0])

    # Two more players still needed after this one, 100 points each
    assert await budget.max_allowed_bid(team, tournament) == 800


@pytest.mark.asyncio
async def test_max_allowed_bid_without_minimum_squad(db_session, auction):
    store = LedgerStore(db_session)
    budget = BudgetTracker(store)
    tournament = await store.get_tournament(auction.tournament_id)
    team = await store.get_team(auction.team_ids[0])

    assert await budget.max_allowed_bid(team, tournament) == 1000


@pytest.mark.asyncio
async def test_verify_team_detects_drift(db_session, auction):
    store = LedgerStore(db_session)
    budget = BudgetTracker(store)
    team_id = auction.team_ids[0]

    assert (await budget.verify_team(team_id))["is_consistent"] is True

    # Sold without debiting the stored column
    await _mark_sold(store, auction.player_ids[0], team_id, 300)
    check = await budget.verify_team(team_id)

    assert check["is_consistent"] is False
    assert check["derived_remaining"] == 700
    assert check["stored_remaining"] == 1000
