"""Approval policy, safety assessment and sandbox selection."""
