"""Billing app package.

Durable billing job queue and the worker that reconciles booking groups
with the external invoicing provider.
"""
