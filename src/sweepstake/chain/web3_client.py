"""web3.py adapter for the lottery contract."""

import logging
import threading
import time
from typing import Any, Callable, Iterator, Optional, TypeVar

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3Exception,
)

from ..config import ConfigurationError, OrchestratorConfig
from ..models.events import DomainEvent, EventKind, SourcePosition
from ..models.round import RoundResult, RoundState
from ..models.trigger import TxOutcome
from .abi import ENTRY_EVENT, LOTTO_ABI, RESOLVED_EVENT, TRANSITION_FUNCTION
from .client import LedgerClient, RejectedByLedger, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_TRANSIENT_ERRORS = (
    requests.exceptions.RequestException,
    ProviderConnectionError,
    TimeExhausted,
    ConnectionError,
    TimeoutError,
)


def _revert_reason(error: ContractLogicError) -> str:
    """Extract the human-readable reason from a contract revert."""
    message = getattr(error, "message", None) or str(error)
    prefix = "execution reverted: "
    if message.startswith(prefix):
        return message[len(prefix):].strip() or "execution reverted"
    return message.strip() or "execution reverted"


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return Web3.to_hex(value)


class Web3LedgerClient(LedgerClient):
    """Contract client over a JSON-RPC endpoint.

    Reads are pinned to a single block so every field of a RoundState
    comes from the same ledger height.
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        account: Any = None,
        *,
        gas_limit: int = 500000,
        receipt_timeout: float = 120.0,
        round_duration: Optional[int] = None,
        winning_number_count: int = 7,
        start_block: int = 0,
        max_block_span: int = 2000,
        poll_interval: float = 10.0,
    ):
        """Initialize the client.

        Args:
            w3: Connected Web3 instance
            contract_address: Lottery contract address
            account: eth_account LocalAccount used to sign the transition (optional)
            gas_limit: Gas limit for the transition
            receipt_timeout: Seconds to wait for a transition receipt
            round_duration: Override for ROUND_DURATION(); read once from the contract when None
            winning_number_count: Number of per-index winning values to read
            start_block: First block of a subscription with no resume point
            max_block_span: Maximum blocks per log query
            poll_interval: Seconds between head checks when caught up
        """
        self.w3 = w3
        self.address = Web3.to_checksum_address(contract_address)
        self.contract = w3.eth.contract(address=self.address, abi=LOTTO_ABI)
        self.account = account
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self.winning_number_count = winning_number_count
        self.start_block = start_block
        self.max_block_span = max_block_span
        self.poll_interval = poll_interval
        self._round_duration = round_duration

    @classmethod
    def from_config(cls, config: OrchestratorConfig, require_signer: bool = False) -> "Web3LedgerClient":
        """Build a client from configuration.

        Raises:
            ConfigurationError: If the endpoint, address or key is invalid
        """
        config.validate_for_chain(require_signer=require_signer)
        chain = config.chain

        provider = Web3.HTTPProvider(
            chain.rpc_url,
            request_kwargs={"timeout": chain.request_timeout_seconds},
        )
        w3 = Web3(provider)

        account = None
        if chain.private_key:
            try:
                account = Account.from_key(chain.private_key)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Invalid private key: {e}") from e

        return cls(
            w3,
            chain.contract_address,
            account,
            gas_limit=chain.transition_gas_limit,
            receipt_timeout=chain.receipt_timeout_seconds,
            round_duration=chain.round_duration_seconds,
            winning_number_count=chain.winning_number_count,
            start_block=config.events.start_block,
            max_block_span=config.events.max_block_span,
            poll_interval=config.events.poll_interval_seconds,
        )

    def check_connection(self) -> None:
        """Verify the endpoint is reachable and the contract exists.

        Raises:
            ConfigurationError: If either check fails
        """
        try:
            connected = self.w3.is_connected()
        except _TRANSIENT_ERRORS as e:
            raise ConfigurationError(f"Cannot reach RPC endpoint: {e}") from e
        if not connected:
            raise ConfigurationError("Cannot reach RPC endpoint")

        try:
            code = self.w3.eth.get_code(self.address)
        except (Web3Exception, *_TRANSIENT_ERRORS) as e:
            raise ConfigurationError(f"Failed to read contract code at {self.address}: {e}") from e
        if not code:
            raise ConfigurationError(f"No contract deployed at {self.address}")

    def _call(self, fn: Callable[[], T]) -> T:
        """Run one RPC interaction, mapping failures to TransientError."""
        try:
            return fn()
        except ContractLogicError as e:
            raise TransientError(f"Contract call reverted: {_revert_reason(e)}") from e
        except (Web3Exception, *_TRANSIENT_ERRORS) as e:
            raise TransientError(f"RPC request failed: {e}") from e

    def _round_duration_at(self, block: int) -> int:
        if self._round_duration is None:
            self._round_duration = int(self.contract.functions.ROUND_DURATION().call(block_identifier=block))
        return self._round_duration

    def read_round_state(self) -> RoundState:
        return self._call(self._read_round_state)

    def _read_round_state(self) -> RoundState:
        block = self.w3.eth.block_number
        fns = self.contract.functions

        round_id = int(fns.roundId().call(block_identifier=block))
        start_time = int(fns.roundStart().call(block_identifier=block))
        duration = self._round_duration_at(block)
        participant_count = int(fns.getParticipantsCount().call(block_identifier=block))
        pool_balance = int(fns.getPoolBalance().call(block_identifier=block))
        drawing = bool(fns.drawingInProgress().call(block_identifier=block))

        try:
            last_result = self._read_last_result(round_id, block)
        except (Web3Exception, *_TRANSIENT_ERRORS) as e:
            logger.warning(f"Last draw result unavailable at block {block}: {e}")
            last_result = None

        return RoundState(
            round_id=round_id,
            start_time=start_time,
            duration=duration,
            participant_count=participant_count,
            pool_balance=pool_balance,
            drawing_in_progress=drawing,
            last_result=last_result,
        )

    def _read_last_result(self, round_id: int, block: int) -> Optional[RoundResult]:
        """Winning numbers and recipient of the previous round, if it was drawn."""
        fns = self.contract.functions
        numbers = [
            int(fns.winningNumbers(i).call(block_identifier=block))
            for i in range(self.winning_number_count)
        ]
        # All-zero winning numbers mean no draw has been recorded yet
        if not any(numbers) or round_id < 1:
            return None

        resolved_round = round_id - 1
        recipient = fns.getRewardRecipient(resolved_round).call(block_identifier=block)
        return RoundResult(
            round_id=resolved_round,
            winning_numbers=numbers,
            recipient=None if recipient == ZERO_ADDRESS else recipient,
        )

    def submit_round_transition(self) -> TxOutcome:
        if self.account is None:
            raise ConfigurationError("No signer configured; cannot submit the round transition")

        fn = getattr(self.contract.functions, TRANSITION_FUNCTION)()
        sender = self.account.address

        # Simulate first so a revert costs no gas and keeps its reason
        try:
            fn.call({"from": sender})
        except ContractLogicError as e:
            raise RejectedByLedger(_revert_reason(e)) from e
        except (Web3Exception, *_TRANSIENT_ERRORS) as e:
            raise TransientError(f"Transition preflight failed: {e}") from e

        try:
            nonce = self.w3.eth.get_transaction_count(sender, "pending")
            tx = fn.build_transaction({"from": sender, "nonce": nonce, "gas": self.gas_limit})
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise RejectedByLedger(_revert_reason(e)) from e
        except (Web3Exception, *_TRANSIENT_ERRORS) as e:
            raise TransientError(f"Failed to send transition: {e}") from e

        tx_hex = _hex(tx_hash)
        logger.info(f"Sent transition {tx_hex}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise TransientError(
                f"Receipt for {tx_hex} not seen within {self.receipt_timeout}s",
                tx_hash=tx_hex,
            ) from e
        except (Web3Exception, *_TRANSIENT_ERRORS) as e:
            raise TransientError(f"Failed to fetch receipt for {tx_hex}: {e}", tx_hash=tx_hex) from e

        if receipt["status"] != 1:
            raise RejectedByLedger("transaction reverted", tx_hash=tx_hex)

        return TxOutcome(tx_hash=tx_hex, block_number=receipt["blockNumber"])

    def fetch_events(self, from_block: int, to_block: int) -> list[DomainEvent]:
        """Fetch both event kinds for an inclusive block range, in ledger order."""
        events_api = self.contract.events

        entry_logs = self._call(
            lambda: getattr(events_api, ENTRY_EVENT)().get_logs(from_block=from_block, to_block=to_block)
        )
        resolved_logs = self._call(
            lambda: getattr(events_api, RESOLVED_EVENT)().get_logs(from_block=from_block, to_block=to_block)
        )

        events = [self._entry_event(log) for log in entry_logs]
        events.extend(self._resolved_event(log) for log in resolved_logs)
        events.sort(key=lambda e: e.source.key)
        return events

    def subscribe_events(
        self,
        from_block: Optional[int] = None,
        stop: Optional[threading.Event] = None,
    ) -> Iterator[DomainEvent]:
        next_block = self.start_block if from_block is None else from_block

        while stop is None or not stop.is_set():
            head = self._call(lambda: self.w3.eth.block_number)
            if next_block > head:
                if stop is None:
                    time.sleep(self.poll_interval)
                else:
                    stop.wait(self.poll_interval)
                continue

            to_block = min(head, next_block + self.max_block_span - 1)
            for event in self.fetch_events(next_block, to_block):
                yield event
            next_block = to_block + 1

    @staticmethod
    def _source(log: Any) -> SourcePosition:
        return SourcePosition(
            block_number=int(log["blockNumber"]),
            log_index=int(log["logIndex"]),
            tx_hash=_hex(log.get("transactionHash")),
        )

    def _entry_event(self, log: Any) -> DomainEvent:
        args = log["args"]
        return DomainEvent(
            kind=EventKind.ENTRY_RECORDED,
            round_id=int(args["roundId"]),
            payload={
                "participant": str(args["player"]),
                "numbers": [int(n) for n in args["numbers"]],
            },
            source=self._source(log),
        )

    def _resolved_event(self, log: Any) -> DomainEvent:
        args = log["args"]
        return DomainEvent(
            kind=EventKind.ROUND_RESOLVED,
            round_id=int(args["roundId"]),
            payload={
                "numbers": [int(n) for n in args["numbers"]],
                "prize": int(args["prizePool"]),
            },
            source=self._source(log),
        )
