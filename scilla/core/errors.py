"""Structured error hierarchy for the core engine.

Every failure the core can produce is one of these exceptions. Each carries
the attributes the display layer needs to render a message without parsing
free text.
"""

from __future__ import annotations


class ScillaError(Exception):
    """Base error for all core failures."""


# Cluster transport


class ClusterError(ScillaError):
    """Base error for RPC failures."""


class ClusterUnavailable(ClusterError):
    """Raised when the cluster could not be reached within the retry bounds."""

    def __init__(self, method: str, detail: str, attempts: int = 1) -> None:
        super().__init__(f"{method} unavailable after {attempts} attempt(s): {detail}")
        self.method = method
        self.detail = detail
        self.attempts = attempts


class BlockhashNotFound(ClusterUnavailable):
    """Raised when the cluster no longer recognises the transaction blockhash."""


class ClusterRejected(ClusterError):
    """Raised when the cluster refuses a request with a non-retryable error."""

    def __init__(self, code: int, message: str, data: object | None = None) -> None:
        super().__init__(f"cluster rejected request ({code}): {message}")
        self.code = code
        self.message = message
        self.data = data


# Signing


class SignerError(ScillaError):
    """Base error for signing failures."""


class KeyNotFound(SignerError):
    """Raised when a signature is requested for a key that is not loaded."""

    def __init__(self, pubkey: object) -> None:
        super().__init__(f"no keypair loaded for {pubkey}")
        self.pubkey = pubkey


class SignerIOFailure(SignerError):
    """Raised when key material cannot be read or decoded."""

    def __init__(self, path: object, detail: str) -> None:
        super().__init__(f"unable to read keypair {path}: {detail}")
        self.path = path
        self.detail = detail


# Building


class BuildError(ScillaError):
    """Base error for transaction construction failures."""


class InvalidParameters(BuildError):
    """Raised when an intent fails local validation."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


# Safety


class GuardError(ScillaError):
    """Raised when a session safety guard refuses an intent."""


# Workflows


class WorkflowError(ScillaError):
    """Base error for multi-step workflow aborts."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step


class PreconditionFailed(WorkflowError):
    """Raised when fresh on-chain state does not allow a step to run."""

    def __init__(self, step: str, detail: str) -> None:
        super().__init__(step, f"precondition for '{step}' failed: {detail}")
        self.detail = detail


class StepFailed(WorkflowError):
    """Raised when the cluster rejected the transaction for a step."""

    def __init__(self, step: str, reason: str) -> None:
        super().__init__(step, f"step '{step}' failed: {reason}")
        self.reason = reason


class Indeterminate(WorkflowError):
    """Raised when a step's transaction outcome is unknown."""

    def __init__(self, step: str, signature: object | None = None) -> None:
        super().__init__(step, f"outcome of step '{step}' is unknown")
        self.signature = signature


class Inconsistent(WorkflowError):
    """Raised when a confirmed step left the chain in an unexpected state."""

    def __init__(self, step: str, detail: str) -> None:
        super().__init__(step, f"postcondition for '{step}' violated: {detail}")
        self.detail = detail


# Command resolution


class ResolverError(ScillaError):
    """Base error for menu resolution failures."""


class UnknownCommand(ResolverError):
    def __init__(self, menu_path: tuple[str, ...]) -> None:
        super().__init__(f"unknown command: {' > '.join(menu_path) or '<empty>'}")
        self.menu_path = menu_path


class MissingParameter(ResolverError):
    def __init__(self, name: str) -> None:
        super().__init__(f"missing parameter: {name}")
        self.name = name


class InvalidParameter(ResolverError):
    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"invalid value for {name}: {detail}")
        self.name = name
        self.detail = detail
