"""
Private relay client.

Submits signed transactions as an atomic bundle for one target block and
resolves whether the bundle landed. A relay may drop a bundle without
telling anyone, so submission success only means "not yet known".
"""
import json
import time
import itertools
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

import requests
from eth_account.signers.local import LocalAccount
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3

from ..exceptions import RelayError, RelaySubmissionError, RelayTimeoutError
from ..models import BundleHandle, BundleOutcome, BundleStatus, SignedTransaction
from ..utils import RPC_ERRORS, redact_url, to_hex, validate_url
from ._rate_limited_log import rate_limited_log
from .auth import SIGNATURE_HEADER, sign_request_body

DEFAULT_RELAY_URL = "https://relay.flashbots.net"

BLOCK_PASSED_WITHOUT_INCLUSION = "block-passed-without-inclusion"
ACCOUNT_NONCE_TOO_HIGH = "account-nonce-too-high"


class PrivateRelayClient:
    """
    Client for a Flashbots-style private relay.

    Bundles are sent with ``eth_sendBundle`` and authenticated with the
    funding account's signature. Inclusion is decided from the chain itself:
    once the target block exists, the bundle is included if any of its
    transactions is in that block.
    """

    def __init__(
        self,
        w3: Web3,
        auth_account: LocalAccount,
        relay_url: str = DEFAULT_RELAY_URL,
        retry_count: int = 3,
        timeout: float = 30,
        outcome_timeout: float = 120.0,
        poll_interval: float = 1.0,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the relay client

        Args:
            w3: Web3 instance used to follow the chain head
            auth_account: Account signing relay requests (never the compromised one)
            relay_url: Relay JSON-RPC endpoint
            retry_count: Number of retries for HTTP requests
            timeout: Timeout for HTTP requests in seconds
            outcome_timeout: Default deadline for ``await_outcome`` in seconds
            poll_interval: Default delay between chain head polls in seconds
            logger: Optional logger instance

        Raises:
            ValueError: If the relay URL is not https (unless it's localhost/127.0.0.1)
        """
        self.w3 = w3
        self.auth_account = auth_account
        self.relay_url = validate_url("relay_url", relay_url)
        self.timeout = timeout
        self.outcome_timeout = outcome_timeout
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self._request_ids = itertools.count(1)

        # Setup HTTP session with retries
        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
            other=retry_count
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def submit_bundle(self, transactions: Sequence[SignedTransaction], target_block: int) -> BundleHandle:
        """
        Send a bundle for inclusion at exactly ``target_block``.

        Args:
            transactions: Signed transactions, in execution order
            target_block: Block height the bundle is valid for

        Returns:
            Handle for ``await_outcome``

        Raises:
            ValueError: If the bundle is empty or the target is not positive
            RelaySubmissionError: If the relay rejects or cannot be reached
        """
        transactions = list(transactions)
        if not transactions:
            raise ValueError("A bundle must contain at least one transaction")
        if target_block <= 0:
            raise ValueError(f"Target block must be positive, got {target_block}")

        self.logger.info(
            f"Submitting bundle of {len(transactions)} transaction(s) to "
            f"{redact_url(self.relay_url)} for block {target_block}"
        )
        result = self._rpc(
            "eth_sendBundle",
            [{"txs": [tx.raw for tx in transactions], "blockNumber": hex(target_block)}],
            step="bundle submission",
        )
        bundle_hash = result.get("bundleHash") if isinstance(result, dict) else None
        if bundle_hash is None:
            self.logger.warning(f"Relay accepted the bundle without returning a bundle hash: {result!r}")
        else:
            self.logger.info(f"Bundle accepted by relay: {bundle_hash}")

        return BundleHandle(
            bundle_hash=bundle_hash,
            target_block=target_block,
            transactions=transactions,
        )

    def await_outcome(
        self,
        handle: BundleHandle,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        cancel: Optional[threading.Event] = None
    ) -> BundleOutcome:
        """
        Wait until the target block exists, then decide inclusion.

        A target that has already passed resolves on the first poll.

        Args:
            handle: Handle returned by ``submit_bundle``
            timeout: Deadline in seconds (defaults to ``outcome_timeout``)
            poll_interval: Delay between head polls (defaults to ``poll_interval``)
            cancel: Optional event; setting it stops the wait

        Returns:
            ``included`` or ``not-included`` outcome

        Raises:
            RelayTimeoutError: If the deadline passes or ``cancel`` is set
                before the target block appears
            RelayError: If the target block cannot be read once it exists
        """
        timeout = self.outcome_timeout if timeout is None else timeout
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        deadline = time.monotonic() + timeout
        target = handle.target_block

        while True:
            head = self._poll_head()
            if head is not None and head >= target:
                return self._resolve(handle)

            if cancel is not None and cancel.is_set():
                raise RelayTimeoutError(
                    f"Cancelled while waiting for block {target}", step="outcome resolution"
                )
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RelayTimeoutError(
                    f"Block {target} did not arrive within {timeout}s (last head: {head})",
                    step="outcome resolution",
                )
            time.sleep(min(poll_interval, remaining))

    def get_bundle_stats(self, handle: BundleHandle) -> Optional[Dict[str, Any]]:
        """
        Ask the relay what it saw of a bundle (simulation, builder pickup).

        Returns:
            Relay statistics, or None if the handle has no bundle hash

        Raises:
            RelaySubmissionError: If the relay request fails
        """
        if not handle.bundle_hash:
            return None
        return self._rpc(
            "flashbots_getBundleStatsV2",
            [{"bundleHash": handle.bundle_hash, "blockNumber": hex(handle.target_block)}],
            step="bundle stats",
        )

    def close(self) -> None:
        self.session.close()

    def _poll_head(self) -> Optional[int]:
        try:
            return int(self.w3.eth.block_number)
        except RPC_ERRORS as e:
            rate_limited_log(
                f"Chain head query failed while waiting for bundle: {e}",
                level="warning",
                logger_instance=self.logger,
            )
            return None

    def _resolve(self, handle: BundleHandle) -> BundleOutcome:
        target = handle.target_block
        try:
            block = self.w3.eth.get_block(target)
        except RPC_ERRORS as e:
            raise RelayError(f"Failed to read block {target}: {e}", step="outcome resolution")

        in_block = set()
        for entry in block.get("transactions", []):
            tx_hash = entry if isinstance(entry, (bytes, str)) else entry["hash"]
            in_block.add(to_hex(tx_hash))

        included = [h for h in handle.tx_hashes if to_hex(h) in in_block]
        if included:
            self.logger.info(f"Bundle included in block {target}")
            return BundleOutcome(
                status=BundleStatus.INCLUDED,
                target_block=target,
                bundle_hash=handle.bundle_hash,
                included_tx_hashes=included,
            )

        reason = BLOCK_PASSED_WITHOUT_INCLUSION
        if self._nonce_moved(handle):
            reason = ACCOUNT_NONCE_TOO_HIGH
        self.logger.info(f"Bundle not included in block {target} ({reason})")
        return BundleOutcome(
            status=BundleStatus.NOT_INCLUDED,
            target_block=target,
            bundle_hash=handle.bundle_hash,
            reason=reason,
        )

    def _nonce_moved(self, handle: BundleHandle) -> bool:
        """True if some signer used a bundled nonce outside the bundle."""
        for tx in handle.transactions:
            try:
                current = int(self.w3.eth.get_transaction_count(tx.sender, handle.target_block))
            except RPC_ERRORS as e:
                self.logger.debug(f"Nonce check for {tx.sender} failed: {e}")
                continue
            if current > tx.nonce:
                self.logger.warning(
                    f"Nonce {tx.nonce} of {tx.sender} was consumed outside the bundle "
                    f"(account nonce is now {current})"
                )
                return True
        return False

    def _rpc(self, method: str, params: List[Any], step: str) -> Any:
        """
        Signed JSON-RPC call to the relay.

        Raises:
            RelaySubmissionError: On transport, HTTP, JSON or JSON-RPC errors
        """
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        })
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_request_body(self.auth_account, body),
        }

        try:
            response = self.session.post(self.relay_url, data=body, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            self.logger.error(f"Relay {method} failed with HTTP {status}")
            raise RelaySubmissionError(f"Relay {method} failed: {e}", code=status, step=step)
        except requests.RequestException as e:
            self.logger.error(f"Relay {method} request failed: {e}")
            raise RelaySubmissionError(f"Relay {method} request failed: {e}", step=step)

        try:
            payload = response.json()
        except ValueError as e:
            raise RelaySubmissionError(f"Invalid JSON response from relay for {method}: {e}", step=step)
        if not isinstance(payload, dict):
            raise RelaySubmissionError(f"Unexpected relay response for {method}: {payload!r}", step=step)

        error = payload.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            code = error.get("code") if isinstance(error, dict) else None
            self.logger.error(f"Relay rejected {method}: {message}")
            raise RelaySubmissionError(f"Relay rejected {method}: {message}", code=code, step=step)
        return payload.get("result")
