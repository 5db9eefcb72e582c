from django.apps import AppConfig


class LdapSyncConfig(AppConfig):
    name: str = "ldapsync"
    label: str = "ldapsync"
    verbose_name: str = "LDAP Sync"
    default_auto_field: str = "django.db.models.BigAutoField"
