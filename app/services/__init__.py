"""Approval engine services."""
