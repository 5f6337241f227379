"""Exception types shared across the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ConfigError(RelayError):
    """Configuration is invalid or a referenced environment variable is missing."""


class SignatureMismatch(RelayError):
    """The callback signature does not match the computed one."""


class DecryptError(RelayError):
    """The callback ciphertext could not be decrypted or unpacked."""


class NotFound(RelayError):
    """A guest or conversation does not exist."""


class Overdue(RelayError):
    """The guest's credit is exhausted."""

    def __init__(self, credit: float) -> None:
        super().__init__(f"账户欠款：{credit:.3f}")
        self.credit = credit


class StorageError(RelayError):
    """The database rejected or failed an operation."""


class ProviderError(RelayError):
    """The LLM provider call failed."""


class InternalError(RelayError):
    """Catch-all for unexpected conditions."""


# Access token was invalid or has expired; the messenger refreshes on these.
TOKEN_EXPIRED_CODES = frozenset({40014, 42001})


class SendError(RelayError):
    """The platform rejected an outbound message."""

    def __init__(self, errcode: int, errmsg: str) -> None:
        super().__init__(f"发送消息失败。{errcode}, {errmsg}")
        self.errcode = errcode
        self.errmsg = errmsg

    @property
    def token_expired(self) -> bool:
        return self.errcode in TOKEN_EXPIRED_CODES
