"""Submit/confirm state machine for single transactions."""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from scilla.builder import TransactionBuilder, UnsignedTransaction
from scilla.cluster import ClusterClient
from scilla.core.audit import AuditTrail
from scilla.core.config import Commitment, ScillaConfig
from scilla.core.errors import (
    BlockhashNotFound,
    ClusterError,
    ClusterRejected,
    ClusterUnavailable,
)
from scilla.models import Airdrop, Confirmed, Failed, Intent, TimedOut, TransactionOutcome
from scilla.safety import ClusterGuard
from scilla.signer import KeypairSigner

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class ExecutionState(str, Enum):
    BUILDING = "building"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    POLLING = "polling"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class _Inflight:
    """Latest signature handed to the cluster, if any."""

    signature: Signature | None = None


class TransactionExecutor:
    """Build, sign, submit and confirm a single intent.

    Every call to :meth:`execute` produces exactly one terminal outcome:

    * ``Confirmed`` only after ``getSignatureStatuses`` reported the
      session's commitment level.
    * ``Failed`` when the cluster rejected the transaction or reported an
      execution error. Rejections are never retried.
    * ``TimedOut`` when the outcome is unknown: the confirmation deadline
      passed, submission attempts ran out after a request that may have
      reached the cluster, or the operator interrupted the wait.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        signer: KeypairSigner,
        builder: TransactionBuilder | None = None,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
        submit_max_attempts: int = 3,
        poll_interval: float = 2.0,
        confirm_timeout: float = 60.0,
        guard: ClusterGuard | None = None,
        audit: AuditTrail | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.cluster = cluster
        self.signer = signer
        self.builder = builder or TransactionBuilder()
        self.commitment = commitment
        self.submit_max_attempts = submit_max_attempts
        self.poll_interval = poll_interval
        self.confirm_timeout = confirm_timeout
        self.guard = guard
        self.audit = audit
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: ScillaConfig,
        cluster: ClusterClient,
        signer: KeypairSigner,
        builder: TransactionBuilder | None = None,
        *,
        guard: ClusterGuard | None = None,
        audit: AuditTrail | None = None,
    ) -> TransactionExecutor:
        return cls(
            cluster,
            signer,
            builder,
            commitment=config.commitment_level,
            submit_max_attempts=config.submit_max_attempts,
            poll_interval=config.confirm_poll_interval_seconds,
            confirm_timeout=config.confirm_timeout_seconds,
            guard=guard,
            audit=audit,
        )

    async def execute(self, intent: Intent, fee_payer: Pubkey | None = None) -> TransactionOutcome:
        """Run ``intent`` to a terminal outcome.

        Raises:
            InvalidParameters: If the intent fails local validation. No network
                call is made in that case.
            GuardError: If the session guard refuses the intent.
            SignerError: If a required signer is not loaded.
        """
        self.builder.validate(intent)
        if self.guard is not None:
            self.guard.check_intent(intent)

        if isinstance(intent, Airdrop):
            outcome = await self._request_airdrop(intent)
        else:
            payer = fee_payer or self.signer.default
            outcome = await self._submit_and_confirm(intent, payer)

        self._record(intent, outcome)
        return outcome

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _submit_and_confirm(self, intent: Intent, fee_payer: Pubkey) -> TransactionOutcome:
        inflight = _Inflight()
        try:
            submitted = await self._submit(intent, fee_payer, inflight)
            if not isinstance(submitted, Signature):
                return submitted
            return await self._poll(submitted)
        except ClusterRejected as exc:
            self._transition(ExecutionState.FAILED, intent.kind, exc.message)
            return Failed(reason=exc.message)
        except asyncio.CancelledError:
            if inflight.signature is None:
                raise
            _uncancel_current_task()
            logger.warning(
                "Interrupted while awaiting {}; outcome unknown, re-check before retrying",
                inflight.signature,
            )
            self._transition(ExecutionState.TIMED_OUT, intent.kind, "interrupted")
            return TimedOut(signature=inflight.signature, interrupted=True)

    async def _submit(
        self, intent: Intent, fee_payer: Pubkey, inflight: _Inflight
    ) -> Signature | TransactionOutcome:
        # A submission whose request failed in transit and may still land.
        pending: Signature | None = None

        for attempt in range(1, self.submit_max_attempts + 1):
            if pending is not None and await self._has_landed(pending):
                logger.info("Earlier submission {} landed; not resubmitting", pending)
                return pending

            self._transition(ExecutionState.BUILDING, intent.kind, f"attempt {attempt}")
            try:
                blockhash = await self.cluster.get_latest_blockhash()
            except ClusterUnavailable as exc:
                logger.warning("Could not fetch blockhash (attempt {}): {}", attempt, exc)
                continue

            transaction = self._sign(self.builder.build(intent, fee_payer, blockhash.value))
            candidate = transaction.signatures[0]
            self._transition(ExecutionState.SIGNED, intent.kind, str(candidate))

            inflight.signature = candidate
            try:
                signature = await self.cluster.send_transaction(bytes(transaction))
            except BlockhashNotFound as exc:
                logger.warning("Blockhash expired before submission (attempt {}): {}", attempt, exc)
                continue
            except ClusterUnavailable as exc:
                pending = candidate
                logger.warning("Submission of {} unavailable (attempt {}): {}", candidate, attempt, exc)
                continue

            self._transition(ExecutionState.SUBMITTED, intent.kind, str(signature))
            return signature

        if pending is not None:
            self._transition(ExecutionState.TIMED_OUT, intent.kind, "submission attempts exhausted")
            return TimedOut(signature=pending)
        reason = f"cluster unavailable after {self.submit_max_attempts} submission attempt(s)"
        self._transition(ExecutionState.FAILED, intent.kind, reason)
        return Failed(reason=reason)

    async def _poll(self, signature: Signature) -> TransactionOutcome:
        self._transition(ExecutionState.POLLING, "signature", str(signature))
        deadline = self._clock() + self.confirm_timeout

        while True:
            try:
                status = await self.cluster.get_signature_status(signature)
            except ClusterError as exc:
                logger.warning("Status poll for {} failed: {}", signature, exc)
                status = None

            if status is not None:
                if status.err is not None:
                    reason = describe_transaction_error(status.err)
                    self._transition(ExecutionState.FAILED, "signature", reason)
                    return Failed(reason=reason, signature=signature)
                if self.commitment.satisfied_by(status.confirmation_status):
                    self._transition(ExecutionState.CONFIRMED, "signature", f"slot {status.slot}")
                    return Confirmed(slot=status.slot, signature=signature)

            remaining = deadline - self._clock()
            if remaining <= 0:
                self._transition(ExecutionState.TIMED_OUT, "signature", str(signature))
                return TimedOut(signature=signature)
            await self._sleep(min(self.poll_interval, remaining))

    async def _has_landed(self, signature: Signature) -> bool:
        try:
            return await self.cluster.get_signature_status(signature) is not None
        except ClusterError as exc:
            logger.warning("Could not check earlier submission {}: {}", signature, exc)
            return False

    async def _request_airdrop(self, intent: Airdrop) -> TransactionOutcome:
        try:
            signature = await self.cluster.request_airdrop(intent.recipient, intent.lamports)
        except ClusterRejected as exc:
            return Failed(reason=exc.message)
        except ClusterUnavailable as exc:
            logger.warning("Airdrop request unavailable: {}", exc)
            return TimedOut()
        try:
            return await self._poll(signature)
        except asyncio.CancelledError:
            _uncancel_current_task()
            return TimedOut(signature=signature, interrupted=True)

    def _sign(self, unsigned: UnsignedTransaction) -> Transaction:
        message = unsigned.message()
        payload = bytes(message)
        required = message.account_keys[: message.header.num_required_signatures]
        signatures = [self.signer.sign(payload, pubkey) for pubkey in required]
        return Transaction.populate(message, signatures)

    def _transition(self, state: ExecutionState, subject: str, detail: str) -> None:
        logger.debug("[{}] {} - {}", state.value, subject, detail)

    def _record(self, intent: Intent, outcome: TransactionOutcome) -> None:
        if self.audit is None:
            return
        fields: dict[str, object] = {}
        if outcome.signature is not None:
            fields["signature"] = outcome.signature
        if isinstance(outcome, Confirmed):
            fields["slot"] = outcome.slot
        elif isinstance(outcome, Failed):
            fields["reason"] = outcome.reason
        else:
            fields["interrupted"] = outcome.interrupted
        self.audit.transaction(intent.kind, outcome.status, **fields)


def describe_transaction_error(err: Any) -> str:
    """Render a ``TransactionError`` JSON value as readable text."""
    if isinstance(err, str):
        return _split_camel(err)
    if isinstance(err, dict) and "InstructionError" in err:
        index, detail = err["InstructionError"]
        if isinstance(detail, dict) and "Custom" in detail:
            return f"instruction {index}: custom program error 0x{int(detail['Custom']):x}"
        if isinstance(detail, str):
            return f"instruction {index}: {_split_camel(detail)}"
        return f"instruction {index}: {detail}"
    if isinstance(err, dict) and len(err) == 1:
        ((name, value),) = err.items()
        return f"{_split_camel(name)} ({value})"
    return str(err)


def _split_camel(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", " ", name).lower()


def _uncancel_current_task() -> None:
    task = asyncio.current_task()
    if task is not None:
        task.uncancel()
