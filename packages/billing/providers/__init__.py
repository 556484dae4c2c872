"""Billing providers - abstracted external platform integrations."""
