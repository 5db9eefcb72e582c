import uuid

import django.utils.timezone
from django.db import migrations, models

import ldapsync.models


def base_fields():
    return [
        ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
        ("uuid", models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
        ("create_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
        ("update_at", models.DateTimeField(auto_now=True)),
        ("created_by", models.CharField(blank=True, default="", max_length=128)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="User",
            fields=[
                *base_fields(),
                ("name", models.CharField(max_length=128, unique=True)),
                ("nick_name", models.CharField(blank=True, default="", max_length=128)),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("type", models.CharField(choices=[("LOCAL", "Local"), ("LDAP", "LDAP")], default="LOCAL", max_length=16)),
                ("is_admin", models.BooleanField(default=False)),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
            },
        ),
        migrations.CreateModel(
            name="RoleBinding",
            fields=[
                *base_fields(),
                ("name", models.CharField(max_length=255, unique=True)),
                ("subject_kind", models.CharField(default="User", max_length=32)),
                ("subject_name", models.CharField(max_length=128)),
                ("role_ref", models.CharField(max_length=128)),
            ],
            options={
                "verbose_name": "role binding",
                "verbose_name_plural": "role bindings",
            },
        ),
        migrations.CreateModel(
            name="DirectoryConfig",
            fields=[
                *base_fields(),
                ("address", models.CharField(max_length=255)),
                ("port", models.PositiveIntegerField(default=389)),
                ("username", models.CharField(blank=True, default="", max_length=255, verbose_name="Bind DN")),
                ("password", models.CharField(blank=True, default="", max_length=255)),
                ("tls", models.BooleanField(default=False)),
                ("enable", models.BooleanField(default=False)),
                ("dn", models.CharField(max_length=255, verbose_name="Base DN")),
                ("filter", models.CharField(default="(objectClass=person)", max_length=1024)),
                ("size_limit", models.PositiveIntegerField(default=0)),
                ("time_limit", models.PositiveIntegerField(default=30)),
                ("mapping", models.JSONField(default=ldapsync.models.default_mapping)),
            ],
            options={
                "verbose_name": "directory",
                "verbose_name_plural": "directories",
            },
        ),
        migrations.CreateModel(
            name="ImageRepo",
            fields=[
                *base_fields(),
                ("name", models.CharField(max_length=128, unique=True)),
                ("type", models.CharField(max_length=32)),
                ("end_point", models.CharField(max_length=255)),
                ("download_url", models.CharField(blank=True, default="", max_length=255)),
                ("repo_name", models.CharField(blank=True, default="", max_length=255)),
                ("version", models.CharField(blank=True, default="", max_length=32)),
                ("auth", models.BooleanField(default=False)),
                ("allow_anonymous", models.BooleanField(default=False)),
                ("username", models.CharField(blank=True, default="", max_length=255)),
                ("password", models.CharField(blank=True, default="", max_length=255)),
            ],
            options={
                "verbose_name": "image repository",
                "verbose_name_plural": "image repositories",
            },
        ),
        migrations.CreateModel(
            name="OperationLog",
            fields=[
                *base_fields(),
                ("operator", models.CharField(max_length=128)),
                ("operation", models.CharField(max_length=255)),
                ("detail", models.TextField(blank=True, default="")),
            ],
        ),
        migrations.CreateModel(
            name="LoginLog",
            fields=[
                *base_fields(),
                ("user_name", models.CharField(max_length=128)),
                ("ip", models.CharField(blank=True, default="", max_length=64)),
                ("city", models.CharField(blank=True, default="", max_length=128)),
            ],
        ),
    ]
