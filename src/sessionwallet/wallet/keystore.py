"""Per-owner session identity storage using eth-account.

One identity per owner address. ``create`` always generates a fresh key
and overwrites whatever was stored before; there is no merge and no
rollback (last write wins).
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from sessionwallet.exceptions import IdentityError
from sessionwallet.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """A session signing identity bound to one owner address."""
    secret_key: str = field(repr=False)
    public_address: str
    owner_key: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "Identity":
        data = json.loads(raw)
        return cls(
            secret_key=data["secret_key"],
            public_address=data["public_address"],
            owner_key=data["owner_key"],
        )


def account_for(identity: Identity) -> LocalAccount:
    """Load the signing account and check it matches the stored address.

    Raises:
        IdentityError: If the key is malformed or derives another address
    """
    if not identity.secret_key:
        raise IdentityError("Session identity has no secret key")
    try:
        account = Account.from_key(identity.secret_key)
    except Exception as e:
        raise IdentityError(f"Malformed session key for {identity.public_address}: {e}") from e

    if account.address.lower() != identity.public_address.lower():
        raise IdentityError(
            f"Session key derives {account.address}, expected {identity.public_address}"
        )
    return account


class KeyStore:
    """Persists one generated identity per owner."""

    def __init__(self, store: KeyValueStore, prefix: str = "block_placer_burner_wallet_"):
        self.store = store
        self.prefix = prefix

    def storage_key(self, owner: str) -> str:
        """Namespaced key for an owner (case-normalized)."""
        if not owner or not owner.strip():
            raise IdentityError("Owner address is required")
        return f"{self.prefix}{owner.strip().lower()}"

    async def get(self, owner: str) -> Optional[Identity]:
        """Load the owner's identity. Unparseable records read as None."""
        raw = await self.store.get(self.storage_key(owner))
        if not raw:
            return None
        try:
            return Identity.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable identity record for {owner}: {e}")
            return None

    async def create(self, owner: str) -> Identity:
        """Generate a fresh identity for the owner, replacing any prior one."""
        key = self.storage_key(owner)
        account = Account.create()
        identity = Identity(
            secret_key=Web3.to_hex(account.key),
            public_address=account.address,
            owner_key=owner.strip(),
        )
        await self.store.set(key, identity.to_json())
        logger.info(f"Created session identity {identity.public_address} for owner {owner}")
        return identity

    async def clear(self, owner: str) -> None:
        """Delete the owner's identity. Clearing a missing identity is a no-op."""
        await self.store.remove(self.storage_key(owner))
        logger.info(f"Cleared session identity for owner {owner}")
