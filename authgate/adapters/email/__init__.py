"""Outbound email adapters.

Delivery is an external collaborator; the service only needs a ``send``
capability so workflows can hand verification and reset links to a mailer.
"""
