# Initial migration for Campaign, StageArtifact, Source and BlogPost

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('brands', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Campaign',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('website_url', models.URLField(max_length=500)),
                ('target_country', models.CharField(blank=True, max_length=100)),
                ('language', models.CharField(default='English', max_length=50)),
                ('keywords', models.JSONField(blank=True, default=list, help_text='Seed keywords from the user')),
                ('target_article_count', models.PositiveIntegerField(default=1)),
                ('article_length', models.CharField(choices=[('short', 'Short'), ('medium', 'Medium'), ('long', 'Long')], default='medium', max_length=10)),
                ('current_step', models.CharField(choices=[('keyword_research', 'Keyword Research'), ('content_strategy', 'Content Strategy'), ('source_discovery', 'Source Discovery'), ('writing', 'Writing'), ('humanization', 'Humanization'), ('review', 'Review')], default='keyword_research', max_length=30)),
                ('status', models.CharField(choices=[('keyword_research', 'Keyword Research'), ('content_strategy', 'Content Strategy'), ('source_discovery', 'Source Discovery'), ('writing', 'Writing'), ('humanization', 'Humanization'), ('review', 'Review'), ('completed', 'Completed'), ('failed', 'Failed')], default='keyword_research', max_length=30)),
                ('progress', models.PositiveSmallIntegerField(default=0)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('is_archived', models.BooleanField(default=False)),
                ('archived_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('brand', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='campaigns', to='brands.brand')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='campaigns', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'campaigns',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['user', 'is_archived'], name='campaigns_user_archived_idx')],
            },
        ),
        migrations.CreateModel(
            name='StageArtifact',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('stage', models.CharField(max_length=30)),
                ('version', models.PositiveIntegerField(default=1)),
                ('success', models.BooleanField(default=False)),
                ('payload', models.JSONField(blank=True, null=True)),
                ('raw_response', models.TextField(blank=True)),
                ('error_kind', models.CharField(blank=True, max_length=50)),
                ('error_message', models.TextField(blank=True)),
                ('model', models.CharField(blank=True, max_length=100)),
                ('prompt_tokens', models.IntegerField(default=0)),
                ('completion_tokens', models.IntegerField(default=0)),
                ('total_tokens', models.IntegerField(default=0)),
                ('cost_usd', models.DecimalField(decimal_places=6, default=0, max_digits=12)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('campaign', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='artifacts', to='campaigns.campaign')),
            ],
            options={
                'db_table': 'stage_artifacts',
                'ordering': ['campaign', 'stage', '-version'],
                'unique_together': {('campaign', 'stage', 'version')},
            },
        ),
        migrations.CreateModel(
            name='Source',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('url', models.URLField(max_length=1000)),
                ('title', models.CharField(blank=True, max_length=500)),
                ('description', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('success', 'Success'), ('partial', 'Partial'), ('failed', 'Failed')], default='pending', max_length=20)),
                ('content_excerpt', models.TextField(blank=True)),
                ('insights', models.JSONField(blank=True, default=dict)),
                ('error', models.TextField(blank=True)),
                ('fetched_at', models.DateTimeField(blank=True, null=True)),
                ('campaign', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sources', to='campaigns.campaign')),
            ],
            options={
                'db_table': 'campaign_sources',
                'ordering': ['id'],
                'unique_together': {('campaign', 'url')},
            },
        ),
        migrations.CreateModel(
            name='BlogPost',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=500)),
                ('slug', models.SlugField(blank=True, max_length=500)),
                ('content', models.TextField(blank=True, help_text='Article body (HTML)')),
                ('meta_description', models.CharField(blank=True, max_length=160)),
                ('keywords', models.JSONField(blank=True, default=list)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('published', 'Published'), ('sync_error', 'Sync Error')], default='draft', max_length=20)),
                ('word_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('brand', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='blog_posts', to='brands.brand')),
                ('campaign', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='blog_posts', to='campaigns.campaign')),
            ],
            options={
                'db_table': 'blog_posts',
                'ordering': ['-created_at'],
            },
        ),
    ]
