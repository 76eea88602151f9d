"""Countboard: named counters with durable history and calendar aggregates."""
