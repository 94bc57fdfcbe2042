"""
Core models for the Symploke engine.
Base classes and operator roles.
"""

import uuid
from django.conf import settings
from django.db import models
from django.db.models.signals import post_save
from django.dispatch import receiver
from django.utils import timezone


class BaseModel(models.Model):
    """
    Abstract base model with common fields for all Symploke models.
    Provides UUID primary key and timestamp tracking.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        verbose_name='ID',
        help_text='Unique identifier (UUID)'
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        verbose_name='Created At',
        help_text='Timestamp when record was created'
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name='Updated At',
        help_text='Timestamp when record was last updated'
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.__class__.__name__} ({self.id})"


class OperatorProfile(BaseModel):
    """
    Role assignment for API users.
    Linked 1:1 with Django User model.
    """

    ROLE_CHOICES = [
        ('admin', 'Administrator'),
        ('operator', 'Operator'),
        ('viewer', 'Viewer'),
    ]

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='operator_profile',
        verbose_name='User',
        help_text='The associated Django user account'
    )

    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        default='operator',
        db_index=True,
        verbose_name='Role',
        help_text='User role determining permissions'
    )

    class Meta:
        db_table = 'operator_profiles'
        verbose_name = 'Operator Profile'
        verbose_name_plural = 'Operator Profiles'

    def __str__(self):
        return f"{self.user.username} ({self.role})"

    @property
    def is_admin(self):
        return self.role == 'admin'


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_operator_profile(sender, instance, created, **kwargs):
    """Auto-create OperatorProfile when a new User is created."""
    if created:
        OperatorProfile.objects.create(user=instance)
