"""Billing API routes."""

from packages.billing.routes import billing, jobs, plans, webhooks

__all__ = ["billing", "jobs", "plans", "webhooks"]
