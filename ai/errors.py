"""
Error taxonomy shared by the stage processor, the quota gate and publishing.

Error kinds are plain strings so they can be persisted on artifacts and sync
records and returned verbatim by the API.
"""

CONFIG_ERROR = 'config_error'
UPSTREAM_RATE_LIMITED = 'upstream_rate_limited'
UPSTREAM_PAYMENT_REQUIRED = 'upstream_payment_required'
UPSTREAM_AUTH_ERROR = 'upstream_auth_error'
UPSTREAM_UNAVAILABLE = 'upstream_unavailable'
UPSTREAM_ERROR = 'upstream_error'
PARSE_ERROR = 'parse_error'
INSUFFICIENT_BALANCE = 'insufficient_balance'
SOURCE_FETCH_ERROR = 'source_fetch_error'
PUBLISH_ERROR = 'publish_error'
INTEGRATION_MISSING = 'integration_missing'
BLOG_RESOLUTION_ERROR = 'blog_resolution_error'

ERROR_MESSAGES = {
    CONFIG_ERROR: 'AI provider is not configured. An operator must set the API credentials.',
    UPSTREAM_RATE_LIMITED: 'The AI provider is rate limiting requests. Wait a moment and resume the campaign.',
    UPSTREAM_PAYMENT_REQUIRED: 'The AI provider account is out of credits. Fund the account and resume the campaign.',
    UPSTREAM_AUTH_ERROR: 'The AI provider rejected the configured API key.',
    UPSTREAM_UNAVAILABLE: 'The AI provider timed out or is unavailable. Resume the campaign to retry.',
    UPSTREAM_ERROR: 'The AI provider rejected the request.',
    PARSE_ERROR: 'The AI response could not be parsed as structured data.',
    INSUFFICIENT_BALANCE: 'Insufficient token balance for this step.',
    SOURCE_FETCH_ERROR: 'No source could be fetched for this campaign.',
    PUBLISH_ERROR: 'Publishing to the CMS failed.',
    INTEGRATION_MISSING: 'No CMS integration is configured for this brand and platform.',
    BLOG_RESOLUTION_ERROR: 'Could not resolve a destination blog on the Shopify store.',
}

# Kinds a user can clear by waiting and resuming (or funding the account)
RETRYABLE_KINDS = frozenset({
    UPSTREAM_RATE_LIMITED,
    UPSTREAM_PAYMENT_REQUIRED,
    UPSTREAM_UNAVAILABLE,
    INSUFFICIENT_BALANCE,
})


def describe(error_kind, detail=None):
    """Human-readable message for an error kind, with optional detail appended."""
    message = ERROR_MESSAGES.get(error_kind, 'Unexpected error.')
    if detail:
        return f"{message} ({detail})"
    return message


def is_retryable(error_kind):
    return error_kind in RETRYABLE_KINDS


class StageError(Exception):
    """Raised inside the stage processor; always converted to a failed StageResult."""

    def __init__(self, error_kind: str, message: str = None, raw_response: str = ''):
        self.error_kind = error_kind
        self.message = message or describe(error_kind)
        self.raw_response = raw_response
        super().__init__(f"{error_kind}: {self.message}")
