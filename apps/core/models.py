"""
Core models for ITDesk.

Provides BaseModel (UUID primary key and timestamps) and DeactivatableModel.
Access-control rows are never removed from the database: deleting one,
alone or through a queryset, clears its is_active flag. Every grant path
already requires is_active, so a deleted row stops granting (or denying)
on the next evaluation, and the row stays behind for audit.
"""
import uuid
from django.db import models
from django.utils import timezone


class DeactivatingQuerySet(models.QuerySet):
    """QuerySet whose delete() deactivates rows instead of removing them."""

    def active(self):
        return self.filter(is_active=True)

    def delete(self):
        """Deactivate all active rows in the queryset."""
        count = self.filter(is_active=True).update(is_active=False, updated_at=timezone.now())
        return count, {self.model._meta.label: count}

    delete.queryset_only = True


class BaseModel(models.Model):
    """
    Abstract base model with UUID primary key and timestamps.

    Ids are opaque so they can be exposed in URLs and audit rows.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        db_index=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class DeactivatableModel(BaseModel):
    """Abstract model whose rows are deactivated, never deleted."""

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive rows have no effect"
    )

    objects = DeactivatingQuerySet.as_manager()

    class Meta(BaseModel.Meta):
        abstract = True

    def delete(self, using=None, keep_parents=False):
        """Deactivate the row."""
        if not self.is_active:
            return 0, {self._meta.label: 0}
        self.is_active = False
        self.save(using=using, update_fields=['is_active', 'updated_at'])
        return 1, {self._meta.label: 1}
