# Importing the package registers every table on Base.metadata.
from apollo.models.user import User
from apollo.models.nft import NFT
from apollo.models.auction import Auction
from apollo.models.bid import Bid
from apollo.models.action_audit_log import ActionAuditLog

__all__ = ["User", "NFT", "Auction", "Bid", "ActionAuditLog"]
