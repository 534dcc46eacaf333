"""
Typed errors raised by Fieldnote services.
"""


class FieldnoteError(Exception):
    """Base class for Fieldnote errors."""


class FetchError(FieldnoteError):
    """Conversation history could not be fetched from Slack."""


class DeliveryError(FieldnoteError):
    """A DM to the end user could not be sent."""


class StoreError(FieldnoteError):
    """A read or write against the database failed."""


class MalformedResponseError(FieldnoteError):
    """The LLM returned output that is not the expected structured data."""
