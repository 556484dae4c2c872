"""
Billing package - token balances, subscriptions and recurring charges.

This package integrates with:
- Stripe: Billing credential authorization, off-session charges, refunds and webhooks

Token accounting and quota enforcement are handled locally by TokenLedger;
renewals are driven by RenewalScheduler and settled by EventReconciler.
"""
