from fastapi import APIRouter

from apollo.api.v1.health import router as health_router
from apollo.api.v1.auction_history import router as auction_history_router
from apollo.api.v1.auctions import router as auctions_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# AUCTIONS
# ------------------------------------------------------------------
v1_router.include_router(auction_history_router, tags=["auction-history"])
v1_router.include_router(auctions_router, tags=["auctions"])
