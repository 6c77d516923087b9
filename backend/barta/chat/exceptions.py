"""
Chat client exceptions.

Every remote or storage failure is converted into one of these kinds at the
boundary where it happens. ``message_key`` selects the user-facing text from
the ``errors`` block of the personality file.
"""


class BartaError(Exception):
    """Base exception for chat client operations."""

    message_key = "send_failed"


class InitializationError(BartaError):
    """Stored history was corrupt or the remote binding could not be built."""

    message_key = "initialization_failed"


class MissingCredential(BartaError):
    """No API key configured; the client runs in local-only mode."""

    message_key = "missing_credential"


class RemoteCallError(BartaError):
    """A call to the remote conversational capability failed."""

    message_key = "send_failed"


class InvalidCredential(RemoteCallError):
    """The provider rejected the configured API key."""

    message_key = "invalid_credential"


class SendFailed(RemoteCallError):
    """Generic, non-retried send failure. The user has to resend."""

    message_key = "send_failed"


class ImageGenerationError(BartaError):
    message_key = "image_generation_failed"


class QuotaExceeded(BartaError):
    """The daily image generation limit is used up."""

    message_key = "quota_exceeded"


class LoginRequired(BartaError):
    message_key = "login_required"


class UnsupportedFile(BartaError):
    message_key = "unsupported_file"


class FileTooLarge(BartaError):
    message_key = "file_too_large"


class EmptyInput(BartaError):
    message_key = "empty_input"


class SessionNotReady(BartaError):
    """No remote binding exists for the active session."""

    message_key = "session_not_ready"


class ExchangeInFlight(BartaError):
    """The active session is still answering the previous turn."""

    message_key = "exchange_in_flight"


class SignInFailed(BartaError):
    message_key = "sign_in_failed"


class SignOutFailed(BartaError):
    message_key = "sign_out_failed"
