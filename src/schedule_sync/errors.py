"""Error hierarchy for schedule synchronization.

Two families live here. Store errors are raised by DocumentStore and
IdentityProvider implementations and classify transport failures. Engine
errors are what the ScheduleSyncEngine surfaces to observers through
``EngineState.error``; none of them is retried automatically.

Example:
    try:
        await store.put(key, document)
    except StoreError as exc:
        raise ToggleWriteFailure(f"Failed to save progress: {exc}") from exc
"""


class ScheduleSyncError(Exception):
    """Base exception for all schedule synchronization errors."""

    pass


class InvalidDateError(ScheduleSyncError, ValueError):
    """Calendar date string is not a well-formed YYYY-MM-DD date."""

    pass


# --- Store / transport layer ---


class StoreError(ScheduleSyncError):
    """Base for anything a DocumentStore or IdentityProvider raises."""

    pass


class TransientStoreError(StoreError):
    """Temporary failure that might succeed if the user tries again.

    Examples: connection reset, timeouts, 503 Service Unavailable, 429.
    """

    pass


class PermanentStoreError(StoreError):
    """Failure that won't succeed on a repeated attempt.

    Examples: 403 permission denied, malformed document, bad project id.
    """

    pass


# --- Engine taxonomy ---


class AuthFailure(ScheduleSyncError):
    """Identity could not be acquired. Fatal: the engine halts."""

    pass


class InitializationFailure(ScheduleSyncError):
    """A freshly created day document could not be persisted.

    The optimistic local checklist stays visible but is unconfirmed.
    """

    pass


class ReadFailure(ScheduleSyncError):
    """The subscription for the active date failed.

    Updates for that date stop until the date is selected again.
    """

    pass


class WriteFailure(ScheduleSyncError):
    """Persisting a user edit failed."""

    operation = "write"


class ToggleWriteFailure(WriteFailure):
    """Toggle could not be saved; the local flip has been inverted."""

    operation = "toggle"


class ResetWriteFailure(WriteFailure):
    """Reset could not be saved; local state is left cleared."""

    operation = "reset"
