"""
Shared Kernel

Base classes, errors and utilities shared by the slot, booking and billing
contexts. Every app builds its domain model on top of this package.
"""
