# apollo/services/store.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select, func, desc
from sqlalchemy.orm import Session, selectinload

from apollo.core.errors import AuctionAlreadySettled, AuctionNotFound
from apollo.core.snapshots import AuctionView, BidView, NFTRef, UserRef
from apollo.models.auction import Auction
from apollo.models.bid import Bid
from apollo.models.nft import NFT
from apollo.models.user import User
from apollo.services.chain import normalize_address

logger = logging.getLogger(__name__)


def _user_ref(u: Optional[User]) -> Optional[UserRef]:
    if u is None:
        return None
    return UserRef(id=u.id, wallet_address=u.wallet_address, username=u.username)


def _nft_ref(n: Optional[NFT]) -> Optional[NFTRef]:
    if n is None:
        return None
    return NFTRef(id=n.id, token_id=n.token_id, title=n.title, owner_id=n.owner_id)


def _bid_view(b: Bid, auction: Optional[AuctionView] = None) -> BidView:
    return BidView(
        id=b.id,
        auction_id=b.auction_id,
        bidder_id=b.bidder_id,
        amount=b.amount,
        created_at=b.created_at,
        auction=auction,
    )


def to_auction_view(a: Auction) -> AuctionView:
    return AuctionView(
        id=a.id,
        nft_id=a.nft_id,
        seller_id=a.seller_id,
        min_bid=a.min_bid,
        settled=bool(a.settled),
        end_time=a.end_time,
        highest_bid=a.highest_bid,
        highest_bidder_id=a.highest_bidder_id,
        start_time=a.start_time,
        nft=_nft_ref(a.nft),
        seller=_user_ref(a.seller),
        highest_bidder=_user_ref(a.highest_bidder),
        bids=tuple(_bid_view(b) for b in a.bids),
    )


class AuctionStore:
    """
    Relational side of the auction core: users, NFTs, auctions and bids.
    Reads return detached snapshots; the only writes are settlement
    bookkeeping.
    """

    # ---------------------------
    # READS
    # ---------------------------

    def get_user_by_wallet(self, db: Session, wallet_address: str) -> Optional[User]:
        addr = normalize_address(wallet_address)
        if not addr:
            return None
        return db.execute(
            select(User).where(func.lower(User.wallet_address) == addr)
        ).scalar_one_or_none()

    def get_bids_by_user(self, db: Session, user_id: int) -> List[BidView]:
        """
        All bids placed by ``user_id``, newest first, each carrying its parent
        auction with NFT, seller, highest bidder and full bid list.
        """
        rows = db.execute(
            select(Bid)
            .where(Bid.bidder_id == user_id)
            .options(
                selectinload(Bid.auction).selectinload(Auction.nft),
                selectinload(Bid.auction).selectinload(Auction.seller),
                selectinload(Bid.auction).selectinload(Auction.highest_bidder),
                selectinload(Bid.auction).selectinload(Auction.bids),
            )
            .order_by(desc(Bid.created_at), desc(Bid.id))
        ).scalars().all()

        views = {}
        out: List[BidView] = []
        for b in rows:
            av = views.get(b.auction_id)
            if av is None:
                av = to_auction_view(b.auction)
                views[b.auction_id] = av
            out.append(_bid_view(b, av))
        return out

    def get_auction(self, db: Session, auction_id: int) -> Optional[AuctionView]:
        a = db.execute(
            select(Auction)
            .where(Auction.id == auction_id)
            .options(
                selectinload(Auction.nft),
                selectinload(Auction.seller),
                selectinload(Auction.highest_bidder),
                selectinload(Auction.bids),
            )
        ).scalar_one_or_none()
        return to_auction_view(a) if a else None

    def list_bidder_ids(self, db: Session, auction_id: int) -> List[int]:
        return list(
            db.execute(
                select(Bid.bidder_id).where(Bid.auction_id == auction_id).distinct()
            ).scalars().all()
        )

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def mark_auction_settled(self, db: Session, auction_id: int) -> Auction:
        """
        false -> true only. Raises AuctionAlreadySettled on a repeat call.
        Flushes without committing; see ``record_settlement``.
        """
        a = db.execute(
            select(Auction).where(Auction.id == auction_id).with_for_update()
        ).scalar_one_or_none()
        if not a:
            raise AuctionNotFound(f"Auction {auction_id} not found.")
        if a.settled:
            raise AuctionAlreadySettled(f"Auction {auction_id} is already settled.")

        a.settled = True
        db.flush()
        return a

    def transfer_ownership(self, db: Session, *, nft_id: int, new_owner_id: int) -> bool:
        """Flushes without committing. Returns False when the owner already matches."""
        nft = db.execute(select(NFT).where(NFT.id == nft_id)).scalar_one_or_none()
        if not nft:
            raise ValueError(f"NFT {nft_id} not found.")
        if nft.owner_id == new_owner_id:
            return False
        nft.owner_id = new_owner_id
        nft.is_listed = False
        db.flush()
        return True

    def _still_with_seller(self, db: Session, a: Auction) -> bool:
        owner_id = db.execute(select(NFT.owner_id).where(NFT.id == a.nft_id)).scalar_one_or_none()
        return owner_id == a.seller_id

    def record_settlement(self, db: Session, *, auction_id: int, winner_id: int) -> bool:
        """
        Settled flag and NFT ownership in one commit.

        Safe to repeat: an already settled auction whose NFT is still with
        the seller gets it moved to the winner, finishing an earlier attempt
        that never got that far. Returns True only when ``settled`` flipped.
        """
        try:
            try:
                a = self.mark_auction_settled(db, auction_id)
                transitioned = True
            except AuctionAlreadySettled:
                a = db.execute(select(Auction).where(Auction.id == auction_id)).scalar_one()
                transitioned = False

            moved = False
            if transitioned or self._still_with_seller(db, a):
                moved = self.transfer_ownership(db, nft_id=a.nft_id, new_owner_id=winner_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if moved and not transitioned:
            logger.warning(
                "ownership repaired on settled auction",
                extra={"auction_id": auction_id, "winner_id": winner_id},
            )
        return transitioned
