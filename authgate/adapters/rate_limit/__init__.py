"""Rate limiting adapters.

Two interchangeable ``RateLimitBackend`` implementations (a sliding-window log
over a shared TTL cache and a serialized fixed-window counter) plus the
registry that binds each scope to one of them at startup.
"""
