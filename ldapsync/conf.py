"""
Access to the ``LDAPSYNC`` Django setting.

Example::

    LDAPSYNC = {
        "DEFAULT_ROLE": "Common User",
        "SYNC_WORKERS": 4,
        "TLS_VERIFY": "always",
    }

Any key left out falls back to :py:data:`DEFAULTS`.
"""

from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

#: Default values for every ``LDAPSYNC`` key
DEFAULTS: dict[str, Any] = {
    # Role bound to every user provisioned from the directory
    "DEFAULT_ROLE": "Common User",
    # Imported users without an email get ``<name>@<DEFAULT_EMAIL_DOMAIN>``
    "DEFAULT_EMAIL_DOMAIN": "example.com",
    "ROLE_BINDING_CREATED_BY": "admin",
    # Worker threads available to background directory syncs
    "SYNC_WORKERS": 2,
    # Network timeout for directory connections, in seconds
    "TIMEOUT": 15.0,
    # "never" or "always"
    "TLS_VERIFY": "never",
    "USE_STARTTLS": False,
    "FOLLOW_REFERRALS": False,
    # Page size for simple paged results searches
    "PAGE_SIZE": 500,
}


def get_setting(name: str) -> Any:
    """
    Return the value of ``settings.LDAPSYNC[name]``, or its default.

    Args:
        name: the key to look up

    Raises:
        ImproperlyConfigured: ``settings.LDAPSYNC`` is not a dict, or ``name``
            is not a known key.

    Returns:
        The configured value.

    """
    if name not in DEFAULTS:
        msg = f"Unknown LDAPSYNC setting: {name}"
        raise ImproperlyConfigured(msg)
    user_settings = getattr(settings, "LDAPSYNC", {})
    if not isinstance(user_settings, dict):
        msg = "settings.LDAPSYNC must be a dict"
        raise ImproperlyConfigured(msg)
    return user_settings.get(name, DEFAULTS[name])
