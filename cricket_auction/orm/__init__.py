from .base import Base

# Registration
from .tournament import Tournament, Team, Player, AuctionStatus, PlayerStatus

# Auction ledger
from .auction import (
    AuctionRound, AuctionBid, BudgetReservation, SaleRecord,
    IdempotencyRecord, AuctionEvent,
    RoundStatus, BidStatus, ReservationStatus, AuctionEventType,
    AppendOnlyViolation
)
