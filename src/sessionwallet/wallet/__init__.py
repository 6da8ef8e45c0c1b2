"""Session identities and the score board that shares their storage."""

from sessionwallet.wallet.keystore import Identity, KeyStore, account_for
from sessionwallet.wallet.leaderboard import Leaderboard, LeaderboardEntry

__all__ = [
    "Identity",
    "KeyStore",
    "account_for",
    "Leaderboard",
    "LeaderboardEntry",
]
