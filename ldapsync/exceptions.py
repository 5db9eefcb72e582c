"""
Exceptions raised by ldapsync.

Query compilation errors (:py:class:`FilterError`, :py:class:`StorageError`)
go straight back to the caller.  Directory errors derive from
:py:class:`DirectoryUnavailable`.  :py:class:`ProvisioningError` is raised
for one entry at a time and the batch that raised it keeps going.
"""


class LdapSyncError(Exception):
    """Base class for every error raised by ldapsync."""


class FilterError(LdapSyncError):
    """A filter condition or query window could not be compiled."""


class StorageError(LdapSyncError):
    """The database failed while reading or writing records."""


class NotFound(LdapSyncError):
    """A lookup matched no record."""


class MappingError(LdapSyncError):
    """An attribute mapping is malformed or names an unknown local field."""


class ProvisioningError(LdapSyncError):
    """
    Creating a user and its role binding failed and was rolled back.

    Args:
        name: the name of the user we were provisioning

    """

    def __init__(self, name: str, msg: str | None = None) -> None:
        self.name = name
        super().__init__(msg or f"Could not provision user {name!r}")


class DirectoryUnavailable(LdapSyncError):
    """We could not connect to, search, or bind against the directory."""


class InvalidCredentials(DirectoryUnavailable):
    """The directory rejected a bind, or the user to bind as does not exist."""


class SyncCancelled(DirectoryUnavailable):
    """A directory search was cancelled before it completed."""


class DirectoryNotConfigured(LdapSyncError):
    """No directory has been configured yet."""


class DirectoryDisabled(LdapSyncError):
    """The configured directory exists but is not enabled."""


class DirectoryAlreadyConfigured(LdapSyncError):
    """A directory is already configured; only one is supported."""


class SyncInProgress(LdapSyncError):
    """A sync for this directory is already running."""
