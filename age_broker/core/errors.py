"""Exception taxonomy for the verification broker.

A missing or expired verification record is not an exception; store lookups
return ``None`` for that case.
"""


class BrokerError(Exception):
    """Base class for broker failures."""


class BadRequest(BrokerError):
    """The caller supplied an unusable request. Nothing was mutated."""


class SessionMismatch(BrokerError):
    """No matching session context, or state/nonce differ from what was issued.

    Handled as a possible forged or replayed callback. The message is for logs
    only and is never shown to the user.
    """


class ProviderError(BrokerError):
    """The identity provider could not be reached or returned unusable data."""


class ProviderDataError(ProviderError):
    """The provider answered but a required claim was missing."""


class MalformedIdentifierError(ProviderError):
    """A national identifier does not have the expected shape."""
