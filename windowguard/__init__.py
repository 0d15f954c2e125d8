"""windowguard: distributed sliding-window rate limiting."""
