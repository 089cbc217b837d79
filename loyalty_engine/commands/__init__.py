"""
CLI Commands for the loyalty engine.

Usage:
    flask loyalty recompute-points --organization-id 1 [--dry-run]
    flask loyalty retroactive-promote --organization-id 1 [--dry-run]
    flask loyalty repair-tier-codes
    flask loyalty init-tiers --organization-id 1

    flask segments recalculate [--organization-id 1]
    flask segments init-templates --organization-id 1
"""
from .loyalty import init_app as init_loyalty_commands
from .segments import init_app as init_segment_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_loyalty_commands(app)
    init_segment_commands(app)
