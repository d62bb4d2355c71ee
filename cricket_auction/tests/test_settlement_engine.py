"""
Unit Tests for the Settlement Engine

A sale must debit exactly one team by exactly the winning amount and
leave a single sale record; unsold and reselect never touch budgets.
"""
import pytest

from cricket_auction.errors import InvalidTransition, NoBidsPresent, NotEligible
from cricket_auction.orm.tournament import PlayerStatus
from cricket_auction.orm.auction import BidStatus, ReservationStatus
from cricket_auction.services.budget_tracker import BudgetTracker
from cricket_auction.services.ledger_store import LedgerStore


@pytest.mark.asyncio
async def test_sell_debits_winner_only(orchestrator, auction, put_under_bid, recorder):
    round_obj = await put_under_bid(
        orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0]
    )
    team_a, team_b = auction.team_ids
    player_id = auction.player_ids[0]
    losing = await orchestrator.place_bid(auction.tournament_id, team_a, player_id, 150)
    winning = await orchestrator.place_bid(auction.tournament_id, team_b, player_id, 200)

    sale = await orchestrator.sell(auction.tournament_id, player_id, idempotency_key="sell-1")

    store = LedgerStore(orchestrator.db)
    player = await store.get_player(player_id)
    assert sale.team_id == team_b
    assert sale.amount == 200
    assert sale.bid_id == winning.id
    assert sale.round_id == round_obj.id
    assert player.status == PlayerStatus.SOLD.value
    assert player.sold_price == 200
    assert player.sold_team_id == team_b

    winner = await store.get_team(team_b)
    assert winner.remaining_budget == 800
    assert winner.players_count == 1
    assert (await store.get_team(team_a)).remaining_budget == 1000

    assert (await store.get_bid(winning.id)).status == BidStatus.WON.value
    assert (await store.get_bid(losing.id)).status == BidStatus.SUPERSEDED.value
    assert (await store.reservation_by_hold(winning.hold_id)).status == ReservationStatus.CONVERTED.value
    assert (await store.get_round(round_obj.id)).current_player_id is None

    budget = BudgetTracker(store)
    assert (await budget.verify_team(team_b))["is_consistent"] is True
    assert await budget.held_amount(team_b) == 0
    assert recorder.messages[-1]["event_type"] == "PLAYER_SOLD"


@pytest.mark.asyncio
async def test_sell_without_bids(orchestrator, auction, put_under_bid):
    await put_under_bid(orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0])

    with pytest.raises(NoBidsPresent):
        await orchestrator.sell(auction.tournament_id, auction.player_ids[0], idempotency_key="sell-1")

    player = await LedgerStore(orchestrator.db).get_player(auction.player_ids[0])
    assert player.status == PlayerStatus.IN_AUCTION.value


@pytest.mark.asyncio
async def test_sell_player_not_under_bid(orchestrator, auction):
    with pytest.raises(InvalidTransition):
        await orchestrator.sell(auction.tournament_id, auction.player_ids[0], idempotency_key="sell-1")


@pytest.mark.asyncio
async def test_sold_player_cannot_be_sold_again(orchestrator, auction, put_under_bid):
    await put_under_bid(orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0])
    await orchestrator.place_bid(auction.tournament_id, auction.team_ids[0], auction.player_ids[0], 150)
    await orchestrator.sell(auction.tournament_id, auction.player_ids[0], idempotency_key="sell-1")

    with pytest.raises(InvalidTransition):
        await orchestrator.sell(auction.tournament_id, auction.player_ids[0], idempotency_key="sell-2")

    team = await LedgerStore(orchestrator.db).get_team(auction.team_ids[0])
    assert team.remaining_budget == 850
    assert team.players_count == 1


@pytest.mark.asyncio
async def test_mark_unsold_refuses_active_bids_without_override(orchestrator, auction, put_under_bid):
    await put_under_bid(orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0])
    bid = await orchestrator.place_bid(auction.tournament_id, auction.team_ids[0], auction.player_ids[0], 150)

    with pytest.raises(NotEligible) as exc_info:
        await orchestrator.mark_unsold(auction.tournament_id, auction.player_ids[0], idempotency_key="unsold-1")
    assert exc_info.value.details["active_bid_ids"] == [bid.id]

    player = await orchestrator.mark_unsold(
        auction.tournament_id, auction.player_ids[0], override=True, idempotency_key="unsold-2"
    )

    store = LedgerStore(orchestrator.db)
    assert player.status == PlayerStatus.UNSOLD.value
    assert player.sold_price is None
    assert (await store.get_bid(bid.id)).status == BidStatus.SUPERSEDED.value
    assert await BudgetTracker(store).held_amount(auction.team_ids[0]) == 0
    assert (await store.get_team(auction.team_ids[0])).remaining_budget == 1000


@pytest.mark.asyncio
async def test_reselect_sold_player_not_eligible(orchestrator, auction, put_under_bid):
    await put_under_bid(orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0])
    await orchestrator.place_bid(auction.tournament_id, auction.team_ids[0], auction.player_ids[0], 150)
    await orchestrator.sell(auction.tournament_id, auction.player_ids[0], idempotency_key="sell-1")

    with pytest.raises(NotEligible):
        await orchestrator.reselect(auction.tournament_id, auction.player_ids[0])


@pytest.mark.asyncio
async def test_reselect_unsold_player(orchestrator, auction, put_under_bid, recorder):
    round_obj = await put_under_bid(
        orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0]
    )
    await orchestrator.mark_unsold(auction.tournament_id, auction.player_ids[0], idempotency_key="unsold-1")

    player = await orchestrator.reselect(auction.tournament_id, auction.player_ids[0])

    assert player.status == PlayerStatus.AVAILABLE.value
    assert player.sold_price is None
    assert player.sold_team_id is None
    assert player.round_id is None
    assert recorder.messages[-1]["event_type"] == "PLAYER_RESELECTED"
    assert recorder.messages[-1]["event_data"]["previous_round_id"] == round_obj.id

    # Back in the pool: it can join a later round
    later = await orchestrator.create_round(auction.tournament_id, player_ids=[auction.player_ids[0]])
    assert later.round_number == 2


@pytest.mark.asyncio
async def test_reselect_available_player_not_eligible(orchestrator, auction):
    with pytest.raises(NotEligible):
        await orchestrator.reselect(auction.tournament_id, auction.player_ids[0])
