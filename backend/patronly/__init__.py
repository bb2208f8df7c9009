"""Patronly: creator subscriptions, payment reconciliation and payouts."""
