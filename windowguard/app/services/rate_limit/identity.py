"""Attribution of requests to rate limit keys."""

from .models import KeyStrategy, Policy, RequestIdentity

UNKNOWN_CLIENT = "unknown"
USER_KEY_PREFIX = "user:"


class IdentityResolver:
    """Derive the Redis key a request is counted against.

    ``KeyStrategy.IP`` always keys by client IP. ``KeyStrategy.USER`` keys by
    authenticated user id and falls back to the client IP when the request
    carries no identity, so dropping the auth header never escapes limiting.
    """

    def identity_for(self, identity: RequestIdentity, strategy: KeyStrategy) -> str:
        """Return the identity part of the key (without policy prefix)."""
        if strategy is KeyStrategy.USER and identity.user_id:
            return f"{USER_KEY_PREFIX}{identity.user_id}"
        return identity.client_ip or UNKNOWN_CLIENT

    def resolve(self, identity: RequestIdentity, policy: Policy, strategy: KeyStrategy) -> str:
        """Return the full Redis key for this request under ``policy``."""
        return policy.key_for(self.identity_for(identity, strategy))
