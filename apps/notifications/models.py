"""Delivery log.

Every attempt to hand a document or notice to a customer is recorded with
its outcome. Delivery is best effort: a failed row never changes booking
or billing state.
"""

from __future__ import annotations

from django.db import models  # type: ignore


class DeliveryLog(models.Model):
    """Outcome of one outbound message."""

    class Channel(models.TextChoices):
        EMAIL = 'email', 'Email'
        WHATSAPP = 'whatsapp', 'WhatsApp'

    channel = models.CharField(max_length=16, choices=Channel.choices)
    recipient = models.CharField(max_length=255, blank=True)
    reference = models.CharField(max_length=128, blank=True)
    success = models.BooleanField(default=False)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['reference']),
        ]

    def __str__(self) -> str:
        state = 'ok' if self.success else 'failed'
        return f"{self.channel} to {self.recipient or '-'} [{state}]"
