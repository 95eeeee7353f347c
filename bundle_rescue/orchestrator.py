"""
TransferOrchestrator - one protected transfer, from balance check to outcome.

States: init -> balance-checked -> [dry-run-attempted] -> submitted -> resolved.
Configuration, encoding and request errors raise before any network call.
Network failures are folded into the report together with the step that
failed; relay non-inclusion is a normal outcome, never an error.
"""
import logging
import threading
from typing import List, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError

from .builder import VALUE_TRANSFER_GAS, TransferIntentBuilder
from .config import RescueConfig
from .encoder import InstructionEncoder, load_token_descriptor
from .exceptions import ConfigurationError, EncodingError, NetworkError, RelayError
from .models import (
    BundleOutcome,
    BundleStatus,
    FinalStatus,
    OrchestratorState,
    SignedTransaction,
    TokenDescriptor,
    TransferReport,
    TransferRequest,
    UnsignedEnvelope,
)
from .relay import PrivateRelayClient
from .signer import Credential, TransactionSigner
from .utils import RPC_ERRORS, format_units, redact_url, same_address


class TransferOrchestrator:
    """
    Drive a single transfer attempt through the private relay.

    To use it you need:
    - A Web3 instance on the target chain
    - The source (compromised) credential and, for gas top-ups, the funding one
    - An encoder, builder, signer and relay client
    """

    def __init__(
        self,
        w3: Web3,
        encoder: InstructionEncoder,
        builder: TransferIntentBuilder,
        signer: TransactionSigner,
        relay: PrivateRelayClient,
        source_credential: Credential,
        funding_credential: Optional[Credential] = None,
        gas_limit: int = 100_000,
        gas_price: int = 20 * 10**9,
        expected_chain_id: Optional[int] = None,
        fund_gas: bool = True,
        dry_run: bool = True,
        attempts: int = 1,
        outcome_timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        token: Optional[TokenDescriptor] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the orchestrator

        Args:
            w3: Web3 instance
            encoder: Encoder for the token's interface descriptor
            builder: Envelope builder
            signer: Transaction signer
            relay: Private relay client
            source_credential: Credential of the account holding the tokens
            funding_credential: Credential of the account paying gas
            gas_limit: Gas limit of the token transfer
            gas_price: Gas price in wei for every bundled transaction
            expected_chain_id: Chain id the node must report (checked when set)
            fund_gas: Prepend a gas top-up from the funding account to the bundle
            dry_run: Simulate the transfer with eth_call before submitting
            attempts: Target blocks to try; a new attempt follows only a
                not-included outcome
            outcome_timeout: Deadline per attempt for the outcome wait
            cancel: Optional event that stops the outcome wait
            token: Token descriptor used by ``build_request``
            logger: Optional logger instance
        """
        self.w3 = w3
        self.encoder = encoder
        self.builder = builder
        self.signer = signer
        self.relay = relay
        self.source_credential = source_credential
        self.funding_credential = funding_credential
        self.gas_limit = gas_limit
        self.gas_price = gas_price
        self.expected_chain_id = expected_chain_id
        self.fund_gas = fund_gas
        self.dry_run = dry_run
        self.attempts = max(1, attempts)
        self.outcome_timeout = outcome_timeout
        self.cancel = cancel
        self.token = token
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: RescueConfig, logger: Optional[logging.Logger] = None) -> "TransferOrchestrator":
        """
        Wire every component from a validated configuration.

        Raises:
            ConfigurationError: If the interface descriptor cannot be loaded
        """
        log = logger or logging.getLogger(__name__)
        token = load_token_descriptor(config.token_address, config.token_decimals, config.abi_path)
        w3 = Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": config.http_timeout}))
        log.info(f"Using RPC endpoint {redact_url(config.rpc_url)}")

        encoder = InstructionEncoder.from_descriptor(token)
        funding = config.funding_account
        return cls(
            w3=w3,
            encoder=encoder,
            builder=TransferIntentBuilder(encoder),
            signer=TransactionSigner(w3),
            relay=PrivateRelayClient(
                w3,
                auth_account=funding,
                relay_url=config.relay_url,
                retry_count=config.retry_count,
                timeout=config.http_timeout,
                outcome_timeout=config.outcome_timeout,
                poll_interval=config.poll_interval,
            ),
            source_credential=config.source_account,
            funding_credential=funding,
            gas_limit=config.gas_limit,
            gas_price=config.gas_price_wei,
            expected_chain_id=config.chain_id,
            fund_gas=config.fund_gas,
            dry_run=config.dry_run,
            attempts=config.attempts,
            token=token,
            logger=logger,
        )

    def build_request(self, config: RescueConfig) -> TransferRequest:
        """
        Transfer request for the configured token, source, destination and amount.

        Raises:
            ConfigurationError: If the orchestrator was built without a token
            InvalidAmount: If the configured amount does not scale to base units
        """
        if self.token is None:
            raise ConfigurationError("No token descriptor configured")
        return TransferRequest.from_quantity(
            token=self.token,
            source=config.source_account.address,
            destination=config.destination,
            quantity=config.amount,
        )

    def run(self, request: TransferRequest) -> TransferReport:
        """
        Execute one protected transfer.

        Args:
            request: Transfer intent

        Returns:
            Report whose status is included, not included, submission error
            or aborted before submission

        Raises:
            ConfigurationError: If collaborators are missing or the node is on
                another chain
            EncodingError: If the descriptor cannot encode the transfer
            TransferRequestError: If amount or destination are invalid
            SigningError: If a credential cannot sign
        """
        # init: everything here is local until the chain id check
        self._check_collaborators()
        transfer_envelope = self.builder.build(request, self.gas_limit, self.gas_price)
        report = TransferReport(amount=request.amount, decimals=request.token.decimals)
        self.logger.info(
            f"Transferring {format_units(request.amount, request.token.decimals)} tokens "
            f"({request.amount} base units) from {request.source} to {request.destination}"
        )
        chain_id = self._resolve_chain_id(report)
        if chain_id is None:
            return self._finish(report)

        # balance-checked: advisory only
        report.token_balance = self._token_balance(request)
        if self.fund_gas:
            report.funding_balance = self._funding_balance(transfer_envelope)
        report.state = OrchestratorState.BALANCE_CHECKED

        # dry-run-attempted: advisory only
        if self.dry_run:
            self._simulate(request, transfer_envelope, report)
            report.state = OrchestratorState.DRY_RUN_ATTEMPTED

        for attempt in range(1, self.attempts + 1):
            report.attempts = attempt
            if not self._attempt(request, transfer_envelope, chain_id, report):
                break
            if attempt < self.attempts:
                self.logger.info(f"Bundle not included; resubmitting (attempt {attempt + 1}/{self.attempts})")
        return self._finish(report)

    def _attempt(
        self,
        request: TransferRequest,
        transfer_envelope: UnsignedEnvelope,
        chain_id: int,
        report: TransferReport
    ) -> bool:
        """One target block. Returns True if another attempt makes sense."""
        try:
            head = int(self.w3.eth.block_number)
        except RPC_ERRORS as e:
            return self._abort(report, "chain head", f"Failed to read the chain head: {e}")

        try:
            transactions = self._sign_bundle(request, transfer_envelope, chain_id)
        except NetworkError as e:
            return self._abort(report, e.step or "signing", str(e))

        target_block = head + 1
        try:
            handle = self.relay.submit_bundle(transactions, target_block)
        except RelayError as e:
            return self._submission_error(report, e.step or "bundle submission", str(e), target_block)
        report.state = OrchestratorState.SUBMITTED

        try:
            outcome = self.relay.await_outcome(handle, timeout=self.outcome_timeout, cancel=self.cancel)
        except NetworkError as e:
            return self._submission_error(report, e.step or "outcome resolution", str(e), target_block)
        report.state = OrchestratorState.RESOLVED

        try:
            outcome.stats = self.relay.get_bundle_stats(handle)
        except RelayError as e:
            self.logger.debug(f"Bundle stats unavailable: {e}")
        report.outcome = outcome

        if outcome.status == BundleStatus.INCLUDED:
            report.status = FinalStatus.INCLUDED
            report.failed_step = report.detail = None
            return False
        report.status = FinalStatus.NOT_INCLUDED
        report.detail = outcome.reason
        return True

    def _sign_bundle(
        self,
        request: TransferRequest,
        transfer_envelope: UnsignedEnvelope,
        chain_id: int
    ) -> List[SignedTransaction]:
        """Gas top-up (when enabled) followed by the token transfer, nonces fetched now."""
        bundle = []
        if self.fund_gas:
            funding_envelope = self.builder.build_gas_funding(
                request.source, transfer_envelope.gas_limit, transfer_envelope.gas_price
            )
            bundle.append(self.signer.sign(funding_envelope, self.funding_credential, chain_id))
        bundle.append(self.signer.sign(transfer_envelope, self.source_credential, chain_id))
        for tx in bundle:
            self.logger.debug(f"Signed {tx.tx_hash} from {tx.sender} with nonce {tx.nonce}")
        return bundle

    def _check_collaborators(self) -> None:
        missing = [
            name for name in ("w3", "encoder", "builder", "signer", "relay", "source_credential")
            if getattr(self, name) is None
        ]
        if self.fund_gas and self.funding_credential is None:
            missing.append("funding_credential")
        if missing:
            raise ConfigurationError(f"Missing collaborators: {', '.join(missing)}")
        # Fail before the network when the descriptor cannot express the transfer
        self.encoder.method("transfer", 2)
        if self.fund_gas:
            funding = self.signer.resolve_signer(self.funding_credential)
            source = self.signer.resolve_signer(self.source_credential)
            # Both would draw the same pending nonce
            if same_address(funding.address, source.address):
                raise ConfigurationError("Funding and source accounts must be distinct")

    def _resolve_chain_id(self, report: TransferReport) -> Optional[int]:
        try:
            chain_id = int(self.w3.eth.chain_id)
        except RPC_ERRORS as e:
            self._abort(report, "chain id", f"Failed to read the chain id: {e}")
            return None
        if self.expected_chain_id is not None and chain_id != self.expected_chain_id:
            raise ConfigurationError(
                f"Chain ID mismatch: node reports {chain_id}, expected {self.expected_chain_id}"
            )
        return chain_id

    def _token_balance(self, request: TransferRequest) -> Optional[int]:
        if not self.encoder.has_method("balanceOf"):
            self.logger.warning("Descriptor has no balanceOf; skipping balance check")
            return None
        try:
            data = self.encoder.encode("balanceOf", [request.source])
            raw = self.w3.eth.call({'to': request.token.address, 'data': Web3.to_hex(data)})
            balance = int(self.encoder.decode_output("balanceOf", raw, 1)[0])
        except (EncodingError, *RPC_ERRORS) as e:
            self.logger.warning(f"Balance check failed: {e}")
            return None

        decimals = request.token.decimals
        self.logger.info(f"Balance of source account: {format_units(balance, decimals)} ({balance} base units)")
        if balance < request.amount:
            self.logger.warning(
                f"Balance {balance} is below the requested {request.amount}; submitting anyway"
            )
        return balance

    def _funding_balance(self, transfer_envelope: UnsignedEnvelope) -> Optional[int]:
        address = getattr(self.funding_credential, "address", None)
        if address is None:
            return None
        try:
            balance = int(self.w3.eth.get_balance(address))
        except RPC_ERRORS as e:
            self.logger.warning(f"Funding balance check failed: {e}")
            return None
        # Top-up value plus its own fee
        required = transfer_envelope.max_fee_wei + VALUE_TRANSFER_GAS * transfer_envelope.gas_price
        if balance < required:
            self.logger.warning(f"Funding account holds {balance} wei, needs about {required} wei for gas")
        return balance

    def _simulate(self, request: TransferRequest, transfer_envelope: UnsignedEnvelope, report: TransferReport) -> None:
        self.logger.info("Attempting dry run of transfer...")
        try:
            raw = self.w3.eth.call({
                'from': request.source,
                'to': transfer_envelope.to,
                'data': transfer_envelope.data,
            })
            # Tokens that return nothing from transfer() count as success
            succeeded = not raw or bool(self.encoder.decode_output("transfer", raw, 2)[0])
            error = None if succeeded else "transfer returned false"
        except ContractLogicError as e:
            succeeded, error = False, f"reverted: {e}"
        except (EncodingError, *RPC_ERRORS) as e:
            succeeded, error = False, str(e)

        report.dry_run_succeeded = succeeded
        report.dry_run_error = error
        if succeeded:
            self.logger.info("Dry run succeeded")
        else:
            self.logger.warning(f"Dry run failed ({error}); submitting anyway")

    def _abort(self, report: TransferReport, step: str, detail: str) -> bool:
        self.logger.error(f"{step} failed: {detail}")
        if report.outcome is not None:
            # An earlier attempt reached the relay; its outcome stands
            report.failed_step = step
            report.detail = detail
            return False
        report.status = FinalStatus.ABORTED
        report.failed_step = step
        report.detail = detail
        report.outcome = None
        return False

    def _submission_error(self, report: TransferReport, step: str, detail: str, target_block: int) -> bool:
        self.logger.error(f"{step} failed: {detail}")
        report.status = FinalStatus.SUBMISSION_ERROR
        report.failed_step = step
        report.detail = detail
        report.outcome = BundleOutcome(
            status=BundleStatus.SUBMISSION_ERROR,
            target_block=target_block,
            reason=detail,
        )
        return False

    def _finish(self, report: TransferReport) -> TransferReport:
        log = self.logger.info if report.status == FinalStatus.INCLUDED else self.logger.warning
        log(report.status_line())
        return report
