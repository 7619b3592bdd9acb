"""Slots app package.

Slot capacity accounting and reservation holds. ``SlotStore`` is the only
code that changes ``Slot.available_capacity``.
"""
