"""
Admin interface for plexuses and their repositories.
"""

from django.contrib import admin
from .models import Plexus, Repo, RepoGlossary


class RepoInline(admin.TabularInline):
    model = Repo
    extra = 0
    fields = ['name', 'full_name']


@admin.register(Plexus)
class PlexusAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'repo_count', 'created_at']
    search_fields = ['name', 'slug']
    prepopulated_fields = {'slug': ('name',)}
    inlines = [RepoInline]

    def repo_count(self, obj):
        return obj.repos.count()
    repo_count.short_description = 'Repos'


@admin.register(Repo)
class RepoAdmin(admin.ModelAdmin):
    list_display = ['name', 'full_name', 'plexus', 'created_at']
    list_filter = ['plexus']
    search_fields = ['name', 'full_name']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(RepoGlossary)
class RepoGlossaryAdmin(admin.ModelAdmin):
    list_display = ['repo', 'updated_at']
    search_fields = ['repo__name', 'repo__full_name']
    readonly_fields = ['id', 'created_at', 'updated_at']
