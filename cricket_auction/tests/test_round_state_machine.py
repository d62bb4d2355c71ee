"""
Unit Tests for the Round State Machine

Round: PENDING -> ACTIVE -> COMPLETED
Player: AVAILABLE -> IN_AUCTION -> SOLD | UNSOLD, UNSOLD -> AVAILABLE
"""
import pytest

from cricket_auction.errors import InvalidTransition, NotEligible
from cricket_auction.orm.tournament import PlayerStatus, AuctionStatus
from cricket_auction.orm.auction import RoundStatus
from cricket_auction.services.ledger_store import LedgerStore
from cricket_auction.state_machines.round_state import (
    RoundStateMachine, assert_player_transition, assert_round_transition
)


@pytest.mark.parametrize("from_status,to_status,allowed", [
    ("AVAILABLE", "IN_AUCTION", True),
    ("IN_AUCTION", "SOLD", True),
    ("IN_AUCTION", "UNSOLD", True),
    ("UNSOLD", "AVAILABLE", True),
    ("AVAILABLE", "SOLD", False),
    ("AVAILABLE", "UNSOLD", False),
    ("SOLD", "AVAILABLE", False),
    ("SOLD", "UNSOLD", False),
    ("UNSOLD", "SOLD", False),
    ("IN_AUCTION", "AVAILABLE", False),
])
def test_player_transitions(from_status, to_status, allowed):
    if allowed:
        assert_player_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransition):
            assert_player_transition(from_status, to_status)


@pytest.mark.parametrize("from_status,to_status,allowed", [
    ("PENDING", "ACTIVE", True),
    ("ACTIVE", "COMPLETED", True),
    ("PENDING", "COMPLETED", False),
    ("COMPLETED", "ACTIVE", False),
    ("ACTIVE", "PENDING", False),
])
def test_round_transitions(from_status, to_status, allowed):
    if allowed:
        assert_round_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransition):
            assert_round_transition(from_status, to_status)


@pytest.mark.asyncio
async def test_create_round_numbers_and_assigns(orchestrator, auction):
    first = await orchestrator.create_round(auction.tournament_id, player_ids=auction.player_ids[:2])
    second = await orchestrator.create_round(auction.tournament_id, name="Marquee")

    assert first.round_number == 1
    assert first.name == "Round 1"
    assert first.status == RoundStatus.PENDING.value
    assert second.round_number == 2
    assert second.name == "Marquee"

    store = LedgerStore(orchestrator.db)
    assert [p.id for p in await store.players_in_round(first.id)] == auction.player_ids[:2]


@pytest.mark.asyncio
async def test_player_cannot_join_two_rounds(orchestrator, auction):
    await orchestrator.create_round(auction.tournament_id, player_ids=[auction.player_ids[0]])
    second = await orchestrator.create_round(auction.tournament_id)

    with pytest.raises(NotEligible):
        await orchestrator.assign_players(auction.tournament_id, second.id, [auction.player_ids[0]])


@pytest.mark.asyncio
async def test_start_round_activates_auction(orchestrator, auction, recorder):
    round_obj = await orchestrator.create_round(auction.tournament_id)

    started = await orchestrator.start_round(auction.tournament_id, round_obj.id)

    assert started.status == RoundStatus.ACTIVE.value
    assert started.started_at is not None
    tournament = await LedgerStore(orchestrator.db).get_tournament(auction.tournament_id)
    assert tournament.active_round_id == round_obj.id
    assert tournament.auction_status == AuctionStatus.ONGOING.value
    assert recorder.event_types()[-2:] == ["ROUND_STARTED", "AUCTION_STATUS_CHANGED"]


@pytest.mark.asyncio
async def test_only_one_round_active(orchestrator, auction):
    first = await orchestrator.create_round(auction.tournament_id)
    second = await orchestrator.create_round(auction.tournament_id)
    await orchestrator.start_round(auction.tournament_id, first.id)

    with pytest.raises(InvalidTransition) as exc_info:
        await orchestrator.start_round(auction.tournament_id, second.id)
    assert exc_info.value.details["active_round_id"] == first.id

    with pytest.raises(InvalidTransition):
        await orchestrator.start_round(auction.tournament_id, first.id)


@pytest.mark.asyncio
async def test_open_player_requires_active_round(orchestrator, auction):
    round_obj = await orchestrator.create_round(auction.tournament_id, player_ids=auction.player_ids)

    with pytest.raises(InvalidTransition):
        await orchestrator.open_player(auction.tournament_id, round_obj.id, auction.player_ids[0])


@pytest.mark.asyncio
async def test_open_player_one_at_a_time(orchestrator, auction, put_under_bid):
    round_obj = await put_under_bid(
        orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0]
    )

    assert round_obj.current_player_id == auction.player_ids[0]
    player = await LedgerStore(orchestrator.db).get_player(auction.player_ids[0])
    assert player.status == PlayerStatus.IN_AUCTION.value

    with pytest.raises(InvalidTransition) as exc_info:
        await orchestrator.open_player(auction.tournament_id, round_obj.id, auction.player_ids[1])
    assert exc_info.value.details["current_player_id"] == auction.player_ids[0]


@pytest.mark.asyncio
async def test_open_player_from_another_round_rejected(orchestrator, auction):
    other = await orchestrator.create_round(auction.tournament_id, player_ids=[auction.player_ids[2]])
    round_obj = await orchestrator.create_round(auction.tournament_id, player_ids=auction.player_ids[:2])
    await orchestrator.start_round(auction.tournament_id, round_obj.id)

    with pytest.raises(InvalidTransition) as exc_info:
        await orchestrator.open_player(auction.tournament_id, round_obj.id, auction.player_ids[2])
    assert exc_info.value.details["player_round_id"] == other.id


@pytest.mark.asyncio
async def test_close_player_requires_outcome(orchestrator, auction, put_under_bid):
    round_obj = await put_under_bid(
        orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0]
    )

    with pytest.raises(InvalidTransition):
        await orchestrator.close_player(auction.tournament_id, round_obj.id)

    await orchestrator.mark_unsold(auction.tournament_id, auction.player_ids[0], idempotency_key="unsold-1")

    # mark_unsold already cleared the pointer
    with pytest.raises(InvalidTransition):
        await orchestrator.close_player(auction.tournament_id, round_obj.id)


@pytest.mark.asyncio
async def test_complete_round_rejects_pending_players(orchestrator, auction, put_under_bid):
    round_obj = await put_under_bid(
        orchestrator, auction.tournament_id, auction.player_ids[:2], auction.player_ids[0]
    )
    await orchestrator.mark_unsold(auction.tournament_id, auction.player_ids[0], idempotency_key="unsold-1")

    with pytest.raises(InvalidTransition) as exc_info:
        await orchestrator.complete_round(auction.tournament_id, round_obj.id)
    assert exc_info.value.details["pending_player_ids"] == [auction.player_ids[1]]

    await orchestrator.open_player(auction.tournament_id, round_obj.id, auction.player_ids[1])
    await orchestrator.mark_unsold(auction.tournament_id, auction.player_ids[1], idempotency_key="unsold-2")
    completed = await orchestrator.complete_round(auction.tournament_id, round_obj.id)

    assert completed.status == RoundStatus.COMPLETED.value
    assert completed.force_closed is False
    tournament = await LedgerStore(orchestrator.db).get_tournament(auction.tournament_id)
    assert tournament.active_round_id is None


@pytest.mark.asyncio
async def test_force_close_with_player_and_no_bids(orchestrator, auction, put_under_bid, recorder):
    round_obj = await put_under_bid(
        orchestrator, auction.tournament_id, auction.player_ids, auction.player_ids[0]
    )

    closed = await orchestrator.force_close_round(auction.tournament_id, round_obj.id)

    store = LedgerStore(orchestrator.db)
    assert closed.status == RoundStatus.COMPLETED.value
    assert closed.force_closed is True
    assert closed.current_player_id is None
    assert (await store.get_player(auction.player_ids[0])).status == PlayerStatus.UNSOLD.value
    for player_id in auction.player_ids[1:]:
        player = await store.get_player(player_id)
        assert player.status == PlayerStatus.AVAILABLE.value
        assert player.round_id is None
    for team_id in auction.team_ids:
        assert (await store.get_team(team_id)).remaining_budget == 1000

    completed_event = recorder.messages[-1]
    assert completed_event["event_type"] == "ROUND_COMPLETED"
    assert completed_event["event_data"]["released_player_ids"] == auction.player_ids[1:]


@pytest.mark.asyncio
async def test_state_machine_runs_in_callers_transaction(db_session, auction):
    machine = RoundStateMachine(LedgerStore(db_session))
    await machine.create_round(auction.tournament_id)

    assert len(machine.events.pending) == 1
    await db_session.rollback()

    assert await LedgerStore(db_session).rounds(auction.tournament_id) == []
