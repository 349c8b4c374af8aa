"""
Core models for the CRM console.

The remote CRM API is the source of truth for colleges. CachedCollege is a
durable local mirror used when the API is unreachable or rejects a write;
ConversionActivity is the audit trail of lead-to-college conversions.
"""

from django.db import models


class CachedCollege(models.Model):
    """
    Local copy of a college record.

    `data` holds the record exactly as the API shapes it (camelCase keys,
    ISO timestamps). `version` increases on every write and is used for
    optimistic concurrency between workers.
    """
    ORIGIN_REMOTE = 'remote'
    ORIGIN_LOCAL = 'local'
    ORIGIN_CHOICES = [
        (ORIGIN_REMOTE, 'Remote API'),
        (ORIGIN_LOCAL, 'Local fallback'),
    ]

    entity_id = models.CharField(max_length=64, unique=True)
    data = models.JSONField(default=dict)

    origin = models.CharField(max_length=20, choices=ORIGIN_CHOICES, default=ORIGIN_REMOTE)
    # True while the remote API has not seen the latest local state
    pending_sync = models.BooleanField(default=False, db_index=True)
    version = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        name = self.data.get('name') if isinstance(self.data, dict) else None
        return f"{name or 'College'} ({self.entity_id})"


class ConversionActivity(models.Model):
    """
    One lead conversion attempt.
    """
    ACTION_CHOICES = [
        ('CREATED', 'College created'),
        ('LINKED', 'Linked to existing college'),
        ('FAILED', 'Failed'),
    ]

    lead_id = models.CharField(max_length=64, db_index=True)
    college_id = models.CharField(max_length=64, blank=True)
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    details_json = models.JSONField(default=dict)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name_plural = 'Conversion activities'

    def __str__(self):
        return f"Lead {self.lead_id} - {self.action}"
