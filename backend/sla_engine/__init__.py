"""Fixdesk SLA engine: deadlines, urgency classification, pause ledger and escalation."""
