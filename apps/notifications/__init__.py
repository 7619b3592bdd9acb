"""Notifications app package.

Delivers invoice documents and package notices to customers by email and
WhatsApp. Delivery is best effort and recorded in ``DeliveryLog``.
"""
