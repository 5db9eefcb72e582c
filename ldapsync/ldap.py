# python-ldap-faker patches ``<module>.ldap.initialize`` for each module named in
# ``ldap_modules``, so every directory call in this package goes through this
# re-export instead of importing ``ldap`` directly.
import ldap
from ldap import *  # noqa: F403

__version__ = ldap.__version__
