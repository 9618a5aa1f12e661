# Initial migration for CMSIntegration and CMSSyncRecord

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('brands', '0001_initial'),
        ('campaigns', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='CMSIntegration',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('platform', models.CharField(choices=[('wordpress', 'WordPress'), ('shopify', 'Shopify')], max_length=20)),
                ('site_url', models.URLField(blank=True, help_text='WordPress site root, e.g. https://example.com')),
                ('username', models.CharField(blank=True, max_length=255)),
                ('application_password', models.CharField(blank=True, max_length=255)),
                ('shop_domain', models.CharField(blank=True, help_text='e.g. my-store.myshopify.com', max_length=255)),
                ('access_token', models.CharField(blank=True, max_length=255)),
                ('blog_id', models.CharField(blank=True, help_text='Destination blog; first blog when empty', max_length=50)),
                ('api_version', models.CharField(blank=True, max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('brand', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cms_integrations', to='brands.brand')),
            ],
            options={
                'db_table': 'cms_integrations',
                'ordering': ['brand', 'platform'],
                'unique_together': {('brand', 'platform')},
            },
        ),
        migrations.CreateModel(
            name='CMSSyncRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('platform', models.CharField(choices=[('wordpress', 'WordPress'), ('shopify', 'Shopify')], max_length=20)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('synced', 'Synced'), ('sync_error', 'Sync Error')], default='pending', max_length=20)),
                ('external_id', models.CharField(blank=True, max_length=100, null=True)),
                ('external_url', models.URLField(blank=True, max_length=1000)),
                ('remote_status', models.CharField(default='draft', max_length=20)),
                ('last_error', models.TextField(blank=True)),
                ('last_attempt_at', models.DateTimeField(blank=True, null=True)),
                ('attempt_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('article', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sync_records', to='campaigns.blogpost')),
            ],
            options={
                'db_table': 'cms_sync_records',
                'ordering': ['-updated_at'],
                'unique_together': {('article', 'platform')},
            },
        ),
    ]
