"""Bookings app package.

This app encapsulates the booking domain: bulk booking groups created in a
single transaction, the booking lifecycle and cancellation. Capacity is
taken through the slot store under per-slot row locks, so a slot is never
oversold.
"""
