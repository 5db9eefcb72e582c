"""
Generic list filtering and LDAP user provisioning for Django dashboards.
"""

__version__ = "0.3.0"
