"""
Plexus models for the Symploke engine.

A plexus is a named group of repositories whose pairwise relationships are
discovered together. The discovery engine only reads these rows; repository
sync and glossary extraction live outside this service.
"""

from django.db import models
from apps.core.models import BaseModel


class Plexus(BaseModel):
    """
    A named group of repositories.
    """

    name = models.CharField(
        max_length=200,
        verbose_name='Name',
        help_text='Display name of the plexus'
    )

    slug = models.SlugField(
        max_length=200,
        unique=True,
        verbose_name='Slug',
        help_text='URL-safe identifier'
    )

    class Meta:
        db_table = 'plexuses'
        ordering = ['name']
        verbose_name = 'Plexus'
        verbose_name_plural = 'Plexuses'

    def __str__(self):
        return self.name

    def repo_ids(self):
        """Ids of the repos that currently belong to this plexus, as strings."""
        return [str(pk) for pk in self.repos.values_list('id', flat=True)]


class Repo(BaseModel):
    """
    A repository that belongs to a plexus.
    """

    plexus = models.ForeignKey(
        Plexus,
        on_delete=models.CASCADE,
        related_name='repos',
        verbose_name='Plexus',
        help_text='The plexus this repository belongs to'
    )

    name = models.CharField(
        max_length=200,
        verbose_name='Name',
        help_text='Repository name'
    )

    full_name = models.CharField(
        max_length=400,
        blank=True,
        verbose_name='Full Name',
        help_text='Owner-qualified name, e.g. "org/repo"'
    )

    class Meta:
        db_table = 'repos'
        ordering = ['name']
        indexes = [
            models.Index(fields=['plexus', 'name'], name='repos_plexus_name_idx'),
        ]
        verbose_name = 'Repository'
        verbose_name_plural = 'Repositories'

    def __str__(self):
        return self.full_name or self.name


class RepoGlossary(BaseModel):
    """
    Derived per-repository vocabulary used by comparators.

    Rebuilt by the glossary extractor; deleted together with a plexus's
    weaves and discovery runs when its data is reset.
    """

    repo = models.OneToOneField(
        Repo,
        on_delete=models.CASCADE,
        related_name='glossary',
        verbose_name='Repository',
    )

    terms = models.JSONField(
        default=dict,
        blank=True,
        verbose_name='Terms',
        help_text='Extracted domain terms and their definitions'
    )

    summary = models.TextField(
        blank=True,
        verbose_name='Summary',
        help_text='Short description of what the repository does'
    )

    class Meta:
        db_table = 'repo_glossaries'
        verbose_name = 'Repository Glossary'
        verbose_name_plural = 'Repository Glossaries'

    def __str__(self):
        return f"Glossary for {self.repo}"
