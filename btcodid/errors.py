# btcodid/errors.py
"""
Typed exceptions for btcodid.

Every error carries a stable ``code`` string so callers that cross a
process or API boundary can branch on the kind without matching on
exception classes.
"""

from typing import Any, Dict, Optional


class BtcoError(Exception):
    """Base exception for btcodid.

    Attributes:
        code: Machine readable error kind
        details: Optional structured context for the failure
    """

    code = "BTCO_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"code": self.code, "message": str(self)}
        if self.details:
            data["details"] = self.details
        return data


class InvalidInputError(BtcoError):
    """Malformed request or argument."""
    code = "INVALID_INPUT"


class InvalidSatoshiError(BtcoError):
    """Non-numeric or out-of-range satoshi identifier."""
    code = "INVALID_SATOSHI"


class InvalidAddressError(BtcoError):
    """Address fails the network-specific format check."""
    code = "INVALID_ADDRESS"


class InvalidKeyTypeError(BtcoError):
    """Key material of a type the operation cannot use."""
    code = "INVALID_KEY_TYPE"


class InvalidPrivateKeyLengthError(BtcoError):
    """Private key with an unsupported byte length."""
    code = "INVALID_PRIVATE_KEY_LENGTH"


class KeyNotFoundError(BtcoError):
    """No key with the given id or alias."""
    code = "KEY_NOT_FOUND"


class ProviderRequiredError(BtcoError):
    """Ledger access was needed but no ordinals provider is configured."""
    code = "ORD_PROVIDER_REQUIRED"


class ProviderError(BtcoError):
    """The ordinals provider failed or returned an unusable response."""
    code = "ORD_PROVIDER_INVALID_RESPONSE"


class InscriptionNotFoundError(BtcoError):
    """Inscription lookup miss."""
    code = "INSCRIPTION_NOT_FOUND"


class ResourceNotFoundError(BtcoError):
    """Resource lookup miss."""
    code = "RESOURCE_NOT_FOUND"


class FrontRunningError(BtcoError):
    """More than one inscription is bound to the same satoshi.

    Attributes:
        satoshi: The contested satoshi
        inscription_count: Number of inscriptions found on it
    """
    code = "FRONT_RUNNING_DETECTED"

    def __init__(self, message: str, satoshi: Optional[int] = None, inscription_count: int = 0):
        super().__init__(message, {"satoshi": satoshi, "inscriptionCount": inscription_count})
        self.satoshi = satoshi
        self.inscription_count = inscription_count


class DustLimitError(BtcoError):
    """An output below the minimum spendable value."""
    code = "DUST_LIMIT_VIOLATION"


class InsufficientFundsError(BtcoError):
    """Selected inputs cannot cover the required outputs and fees.

    Attributes:
        required: Satoshis needed
        available: Satoshis available
    """
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message, {"required": required, "available": available})
        self.required = required
        self.available = available


class ContentTooLargeError(BtcoError):
    """Content exceeds the maximum inscription size."""
    code = "CONTENT_SIZE_EXCEEDED"


class InvalidJsonContentError(BtcoError):
    """Content declared as JSON does not parse."""
    code = "INVALID_JSON"


class OrchestratorStateError(BtcoError):
    """An orchestrator step was called out of order.

    Attributes:
        state: The state the orchestrator was in
        expected: The states the step may be called from
    """
    code = "INVALID_STATE"

    def __init__(self, message: str, state: str = "", expected: tuple = ()):
        super().__init__(message, {"state": state, "expected": list(expected)})
        self.state = state
        self.expected = expected


class VerificationFailedError(BtcoError):
    """Signature mismatch or malformed proof."""
    code = "VERIFICATION_FAILED"
