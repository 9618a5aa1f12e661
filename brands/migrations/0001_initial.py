# Initial migration for Brand

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Brand',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('website', models.URLField(blank=True, help_text='Primary website of the brand')),
                ('description', models.TextField(blank=True, help_text='Brief description of the business')),
                ('industry', models.CharField(blank=True, max_length=255)),
                ('target_audience', models.TextField(blank=True, help_text='Description of target audience/customers')),
                ('brand_voice', models.TextField(blank=True, help_text='Tone and style the brand writes in')),
                ('key_selling_points', models.JSONField(blank=True, default=list, help_text='List of differentiators to weave into content')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='brands', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'brands',
                'ordering': ['-created_at'],
                'unique_together': {('user', 'name')},
            },
        ),
    ]
