"""Reward cascade: levels, ledger, badges, achievements and triggers."""
