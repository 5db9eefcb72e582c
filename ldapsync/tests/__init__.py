import django
from django.conf import settings
from django.core.management import call_command

# Configure Django before any test module imports our models
if not settings.configured:
    settings.configure(
        DATABASES={
            "default": {
                "ENGINE": "django.db.backends.sqlite3",
                "NAME": ":memory:",
            }
        },
        INSTALLED_APPS=["ldapsync"],
        USE_TZ=True,
        LDAPSYNC={
            "DEFAULT_ROLE": "Common User",
            "DEFAULT_EMAIL_DOMAIN": "example.com",
            "SYNC_WORKERS": 1,
            "USE_STARTTLS": False,
            "TLS_VERIFY": "never",
        },
    )
    django.setup()
    call_command("migrate", verbosity=0)
