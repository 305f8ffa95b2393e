"""Approval, sandboxing and retry engine for agent-proposed shell commands."""
