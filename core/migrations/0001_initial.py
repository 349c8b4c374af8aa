from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='CachedCollege',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entity_id', models.CharField(max_length=64, unique=True)),
                ('data', models.JSONField(default=dict)),
                ('origin', models.CharField(choices=[('remote', 'Remote API'), ('local', 'Local fallback')], default='remote', max_length=20)),
                ('pending_sync', models.BooleanField(db_index=True, default=False)),
                ('version', models.PositiveIntegerField(default=1)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ConversionActivity',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('lead_id', models.CharField(db_index=True, max_length=64)),
                ('college_id', models.CharField(blank=True, max_length=64)),
                ('action', models.CharField(choices=[('CREATED', 'College created'), ('LINKED', 'Linked to existing college'), ('FAILED', 'Failed')], max_length=20)),
                ('details_json', models.JSONField(default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name_plural': 'Conversion activities',
                'ordering': ['-created_at'],
            },
        ),
    ]
