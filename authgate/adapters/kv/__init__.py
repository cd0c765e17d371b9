"""Key-value store adapters.

The sliding-window rate limiter only needs get / put-with-TTL / delete, so it
depends on this small interface and can run against an in-process store on a
single node or Redis when several nodes share the same counters.
"""
