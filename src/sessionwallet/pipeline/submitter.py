"""Signs and sends one game action with multi-endpoint retry.

Flow for one ``send`` call:
1. Check the identity's key derives its address (no retry if not)
2. Fresh funds check through the fee policy (no retry if short)
3. Up to ``max_attempts`` rounds over the endpoint list: probe, price gas,
   sign, broadcast; transport errors move to the next endpoint at once
4. Linear backoff between rounds (``retry_base_delay * attempt``)
5. Once an endpoint accepts the transaction, poll for confirmation; the
   outcome is final and is never retried
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from sessionwallet.clock import SYSTEM_CLOCK, Clock
from sessionwallet.config import Settings
from sessionwallet.exceptions import (
    ConfirmationTimeout,
    IdentityError,
    InsufficientFunds,
    OnChainRevert,
    OracleUnavailable,
    RpcResponseError,
    TransactionRejected,
    TransportError,
)
from sessionwallet.pipeline.actions import ActionKind, build_action_record, encode_action_record
from sessionwallet.pipeline.confirmation import ConfirmationPoller
from sessionwallet.pipeline.fees import FeePolicy, buffered_gas_price, estimate_gas_limit
from sessionwallet.pipeline.status import SubmissionState, TransactionResult
from sessionwallet.rpc.base import LedgerEndpoint
from sessionwallet.rpc.pool import EndpointPool, call_with_timeout
from sessionwallet.utils.locks import IdentityLock, LockTimeoutError
from sessionwallet.wallet.keystore import Identity, account_for

logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS_MARKERS = ("insufficient funds", "insufficient balance")


def is_insufficient_funds_message(message: str) -> bool:
    """Check whether a node error message signals an unfunded sender."""
    lowered = message.lower()
    return any(marker in lowered for marker in INSUFFICIENT_FUNDS_MARKERS)


class Submitter:
    """Turns (identity, action, payload) into a confirmed transaction."""

    def __init__(
        self,
        settings: Settings,
        pool: EndpointPool,
        fee_policy: Optional[FeePolicy] = None,
        clock: Clock = SYSTEM_CLOCK,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.settings = settings
        self.pool = pool
        self.fee_policy = fee_policy
        self.clock = clock
        self.poller = poller or ConfirmationPoller(pool, settings, clock)

    async def send(
        self,
        identity: Identity,
        action: ActionKind,
        payload: Optional[dict[str, Any]] = None,
    ) -> TransactionResult:
        """Submit one action and wait for its terminal outcome.

        Never raises for pipeline failures; they are reported in the result.
        """
        action = ActionKind(action)
        payload = dict(payload or {})

        try:
            account = account_for(identity)
        except IdentityError as e:
            logger.error(f"Rejected {action.value}: {e}")
            return TransactionResult.failure(action, str(e))

        try:
            async with IdentityLock(
                account.address, timeout=self.settings.identity_lock_timeout, operation=action.value
            ):
                return await self._send_locked(identity, account, action, payload)
        except LockTimeoutError as e:
            logger.error(f"Rejected {action.value}: {e}")
            return TransactionResult.failure(action, str(e))

    async def _send_locked(
        self, identity: Identity, account: LocalAccount, action: ActionKind, payload: dict[str, Any]
    ) -> TransactionResult:
        if self.fee_policy is not None:
            try:
                check = await self.fee_policy.sufficiency(identity, action, payload)
            except OracleUnavailable as e:
                logger.error(f"Funds check for {action.value} failed: {e}")
                return TransactionResult.failure(action, f"Balance check failed: {e}")
            if not check.sufficient:
                error = InsufficientFunds(check.required, check.available, check.shortfall)
                logger.warning(f"Skipping {action.value} for {account.address}: {error}")
                return TransactionResult.failure(action, str(error))

        return await self._send_with_retries(account, action, payload)

    async def _send_with_retries(
        self, account: LocalAccount, action: ActionKind, payload: dict[str, Any]
    ) -> TransactionResult:
        max_attempts = self.settings.max_attempts
        errors: list[str] = []

        for attempt in range(1, max_attempts + 1):
            for endpoint in self.pool:
                try:
                    tx_hash, value = await self._submit_once(endpoint, account, action, payload, attempt)
                except TransactionRejected as e:
                    logger.error(f"{action.value} rejected on attempt {attempt}: {e}")
                    return TransactionResult.failure(action, str(e), attempts=attempt)
                except TransportError as e:
                    errors.append(f"attempt {attempt} via {endpoint.name}: {e}")
                    logger.warning(f"{action.value} attempt {attempt} failed on {endpoint.name}: {e}")
                    continue

                return await self._confirm(tx_hash, action, value, attempt)

            if attempt < max_attempts:
                delay = self.settings.retry_base_delay * attempt
                logger.warning(
                    f"{action.value} attempt {attempt}/{max_attempts} failed on every endpoint, "
                    f"retrying in {delay:.1f}s"
                )
                await self.clock.sleep(delay)

        message = f"All {max_attempts} attempts failed: " + "; ".join(errors)
        logger.error(f"{action.value} failed: {message}")
        return TransactionResult.failure(action, message, attempts=max_attempts)

    async def _submit_once(
        self,
        endpoint: LedgerEndpoint,
        account: LocalAccount,
        action: ActionKind,
        payload: dict[str, Any],
        attempt: int,
    ) -> tuple[str, Decimal]:
        """Probe, build, sign and broadcast through one endpoint.

        Raises:
            TransportError: Endpoint unusable; caller tries the next one
            TransactionRejected: Node refused the signed transaction
        """
        settings = self.settings

        await call_with_timeout(
            endpoint,
            "eth_blockNumber",
            lambda e: e.get_block_number(timeout=settings.probe_timeout),
            settings.probe_timeout,
        )

        record = build_action_record(action, payload, account.address, attempt, self.clock.now_ms())
        data = encode_action_record(record)

        network_price = await call_with_timeout(
            endpoint,
            "eth_gasPrice",
            lambda e: e.get_gas_price(timeout=settings.rpc_timeout),
            settings.rpc_timeout,
        )
        nonce = await call_with_timeout(
            endpoint,
            "eth_getTransactionCount",
            lambda e: e.get_transaction_count(account.address, timeout=settings.rpc_timeout),
            settings.rpc_timeout,
        )

        value = settings.base_fee(action)
        tx = {
            "to": Web3.to_checksum_address(settings.game_log_address),
            "value": Web3.to_wei(value, "ether"),
            "data": Web3.to_hex(data),
            "gas": estimate_gas_limit(len(data), settings),
            "gasPrice": buffered_gas_price(network_price, settings),
            "nonce": nonce,
            "chainId": settings.chain_id,
        }
        signed = account.sign_transaction(tx)
        raw_tx = Web3.to_hex(signed.raw_transaction)

        try:
            tx_hash = await call_with_timeout(
                endpoint,
                "eth_sendRawTransaction",
                lambda e: e.send_raw_transaction(raw_tx, timeout=settings.send_timeout),
                settings.send_timeout,
            )
        except RpcResponseError as e:
            if is_insufficient_funds_message(e.rpc_message):
                raise TransactionRejected(
                    f"Insufficient funds reported by {endpoint.name}: {e.rpc_message}"
                ) from e
            raise TransactionRejected(f"{endpoint.name} rejected transaction: {e.rpc_message}") from e

        logger.info(
            f"Sent {action.value} from {account.address} via {endpoint.name} "
            f"(attempt {attempt}, nonce {nonce}, gas {tx['gas']}): {tx_hash}"
        )
        return tx_hash, value

    async def _confirm(
        self, tx_hash: str, action: ActionKind, value: Decimal, attempt: int
    ) -> TransactionResult:
        outcome = await self.poller.wait(tx_hash)
        receipt = outcome.receipt

        if outcome.state == SubmissionState.CONFIRMED and receipt is not None:
            logger.info(f"Confirmed {action.value}: {tx_hash} (gas used {receipt.gas_used})")
            return TransactionResult(
                success=True,
                action=action,
                state=outcome.state,
                tx_hash=tx_hash,
                gas_used=receipt.gas_used,
                effective_rate=receipt.effective_gas_price,
                value=value,
                attempts=attempt,
            )

        if outcome.state == SubmissionState.REVERTED_ON_CHAIN and receipt is not None:
            error = OnChainRevert(f"Transaction {tx_hash} reverted on chain")
            logger.error(f"{action.value} failed: {error}")
            result = TransactionResult.failure(
                action, str(error), attempts=attempt, state=outcome.state, tx_hash=tx_hash
            )
            result.gas_used = receipt.gas_used
            result.effective_rate = receipt.effective_gas_price
            return result

        error = ConfirmationTimeout(
            f"Transaction {tx_hash} unconfirmed after {outcome.polls} polls ({outcome.state.value}); "
            "it may still be mined"
        )
        return TransactionResult.failure(
            action, str(error), attempts=attempt, state=outcome.state, tx_hash=tx_hash
        )
