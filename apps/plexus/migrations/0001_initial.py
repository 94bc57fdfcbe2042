import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Plexus',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier (UUID)', primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('name', models.CharField(help_text='Display name of the plexus', max_length=200, verbose_name='Name')),
                ('slug', models.SlugField(help_text='URL-safe identifier', max_length=200, unique=True, verbose_name='Slug')),
            ],
            options={
                'verbose_name': 'Plexus',
                'verbose_name_plural': 'Plexuses',
                'db_table': 'plexuses',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Repo',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier (UUID)', primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('name', models.CharField(help_text='Repository name', max_length=200, verbose_name='Name')),
                ('full_name', models.CharField(blank=True, help_text='Owner-qualified name, e.g. "org/repo"', max_length=400, verbose_name='Full Name')),
                ('plexus', models.ForeignKey(help_text='The plexus this repository belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='repos', to='plexus.plexus', verbose_name='Plexus')),
            ],
            options={
                'verbose_name': 'Repository',
                'verbose_name_plural': 'Repositories',
                'db_table': 'repos',
                'ordering': ['name'],
                'indexes': [models.Index(fields=['plexus', 'name'], name='repos_plexus_name_idx')],
            },
        ),
        migrations.CreateModel(
            name='RepoGlossary',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier (UUID)', primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('terms', models.JSONField(blank=True, default=dict, help_text='Extracted domain terms and their definitions', verbose_name='Terms')),
                ('summary', models.TextField(blank=True, help_text='Short description of what the repository does', verbose_name='Summary')),
                ('repo', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='glossary', to='plexus.repo', verbose_name='Repository')),
            ],
            options={
                'verbose_name': 'Repository Glossary',
                'verbose_name_plural': 'Repository Glossaries',
                'db_table': 'repo_glossaries',
            },
        ),
    ]
