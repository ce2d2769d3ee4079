"""Exception hierarchy for the vault client.

Every error carries a stable ``code`` and, where one applies, the opcode of
the instruction it occurred in. ``retryable`` tells the submitter whether a
rebuild-and-resubmit may be attempted.
"""
from typing import Any, Dict, Optional


class VaultProtocolError(Exception):
    """Base exception for all vault client errors."""
    code: str = "SYS_001"
    retryable: bool = False

    def __init__(self, message: str, details: Dict[str, Any] = None, opcode=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.opcode = opcode

    @property
    def context(self) -> Optional[str]:
        if self.opcode is None:
            return None
        return getattr(self.opcode, "name", str(self.opcode))

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "opcode": self.context,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.context:
            return f"[{self.code}] {self.context}: {self.message}"
        return f"[{self.code}] {self.message}"


class EncodingError(VaultProtocolError):
    """Argument cannot be represented in its fixed-width field."""
    code = "ENC_001"


class DecodingError(VaultProtocolError):
    """Payload or account data has the wrong length or an unknown tag."""
    code = "DEC_001"


class DerivationError(VaultProtocolError):
    """No off-curve address could be derived from the seeds."""
    code = "PDA_001"


class ConstructionError(VaultProtocolError):
    """A required account, signer or argument is missing."""
    code = "BLD_001"


class ConfigurationError(VaultProtocolError):
    """Configuration error."""
    code = "CFG_001"


class SubmissionError(VaultProtocolError):
    """Base for errors raised while submitting a transaction."""
    code = "SUB_000"

    def __init__(
        self,
        message: str,
        details: Dict[str, Any] = None,
        opcode=None,
        signature: Optional[str] = None,
    ):
        super().__init__(message, details, opcode)
        self.signature = signature
        if signature:
            self.details.setdefault("signature", signature)


class SubmissionRejected(SubmissionError):
    """The ledger rejected the transaction. The reason is kept verbatim."""
    code = "SUB_001"

    def __init__(self, reason: str, hint: Optional[str] = None, **kwargs):
        super().__init__(reason, **kwargs)
        self.reason = reason
        self.hint = hint
        if hint:
            self.details.setdefault("hint", hint)


class TransientSubmissionError(SubmissionError):
    """Network timeout or similar; safe to rebuild and resubmit."""
    code = "SUB_002"
    retryable = True


class CheckpointExpired(TransientSubmissionError):
    """The blockhash used for assembly is no longer recent."""
    code = "SUB_003"


class RetriesExhausted(SubmissionError):
    """All transient retries were used up."""
    code = "SUB_004"

    def __init__(self, message: str, attempts: int, last_error: Optional[Exception] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error
        self.details["attempts"] = attempts
        if last_error is not None:
            self.details["last_error"] = str(last_error)


class ConfirmationUnknown(SubmissionError):
    """Confirmation wait ended before an outcome was known.

    The transaction may still land. Re-query its status by signature instead
    of resubmitting.
    """
    code = "SUB_005"
