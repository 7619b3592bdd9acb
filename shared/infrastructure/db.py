"""Database helpers shared by the stores and queues."""

from __future__ import annotations

from django.db import transaction  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore


def lock_queryset_if_possible(queryset, **lock_options):
    """Apply select_for_update when inside transaction.atomic().

    ``lock_options`` are passed through, e.g. ``skip_locked=True`` for queue
    consumers. Backends without row locks (SQLite) ignore the clause and
    rely on their database-wide write lock instead.
    """

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update(**lock_options)
    except NotSupportedError:
        return queryset
