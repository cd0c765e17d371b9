"""Data access helpers over the durable relational store."""
