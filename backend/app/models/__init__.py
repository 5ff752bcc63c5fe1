from .booking import ACCEPTED_TRANSITIONS, Booking, Transaction
from .listing import Listing
from .user import User

__all__ = [
    "User",
    "Listing",
    "Transaction",
    "Booking",
    "ACCEPTED_TRANSITIONS",
]
