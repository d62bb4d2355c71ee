"""
cricket_auction/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from cricket_auction.routes import registration, auction, auction_websocket

router = APIRouter()

router.include_router(registration.router)
router.include_router(auction.router)
router.include_router(auction_websocket.router)
