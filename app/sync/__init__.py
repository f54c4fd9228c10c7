"""Slack <-> Zendesk synchronization engine."""
