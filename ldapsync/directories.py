"""
The directory sync and provisioning pipeline.

:py:class:`DirectoryService` stores the directory's settings and runs the
three ways users come in from it:

* :py:meth:`DirectoryService.get_ldap_users` and
  :py:meth:`DirectoryService.import_users`: preview the directory's users,
  then provision the ones the caller picked, reporting on each one.
* :py:meth:`DirectoryService.sync`: provision every new directory user in the
  background.
* :py:meth:`DirectoryService.test_connect` and
  :py:meth:`DirectoryService.test_login`: check settings without writing
  anything.

Users are provisioned once.  A directory user that already exists locally,
by name or by email, is never updated or deleted by a sync.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS, DatabaseError, close_old_connections, transaction
from ldap_filter import Filter

from .conf import get_setting
from .directory import DirectoryClient, build_user_filter
from .exceptions import (
    DirectoryAlreadyConfigured,
    DirectoryDisabled,
    DirectoryNotConfigured,
    InvalidCredentials,
    LdapSyncError,
    MappingError,
    NotFound,
    ProvisioningError,
    StorageError,
)
from .mapping import AttributeMapping, ImportedUser
from .models import DirectoryConfig, User
from .provisioning import ImportResult, Provisioner, SyncHandle, SyncReport, SyncRunner

logger = logging.getLogger("django-ldapsync")

ClientFactory = Callable[[DirectoryConfig], DirectoryClient]


def validate_filter(value: str) -> str:
    """
    Parse ``value`` as an LDAP search filter and return it unchanged.

    Raises:
        ValidationError: ``value`` is not a valid LDAP filter

    """
    try:
        Filter.parse(value)
    except Exception as e:  # noqa: BLE001
        msg = f'"{value}" is not a valid LDAP filter: {e}'
        raise ValidationError({"filter": msg}) from e
    return value


class DirectoryService:
    """
    Manage the directory configuration and provision users from it.

    Keyword Args:
        client_factory: builds a :py:class:`~ldapsync.directory.DirectoryClient`
            for a :py:class:`~ldapsync.models.DirectoryConfig`
        provisioner: creates users and their role bindings
        runner: runs background syncs
        using: the database alias to read and write

    """

    #: Fields written with a targeted update, before the full save, when
    #: :py:meth:`update` sees that they changed
    PATCH_FIELDS: tuple[str, ...] = ("enable", "tls")

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        provisioner: Provisioner | None = None,
        runner: SyncRunner | None = None,
        using: str = DEFAULT_DB_ALIAS,
    ) -> None:
        self.client_factory = client_factory or DirectoryClient.from_config
        self.using = using
        self.provisioner = provisioner or Provisioner(using=using)
        self.runner = runner or SyncRunner()

    # ------------------------------------------------------------
    # Descriptor CRUD
    # ------------------------------------------------------------

    @property
    def objects(self):
        return DirectoryConfig.objects.using(self.using)

    def _validate(self, config: DirectoryConfig) -> None:
        """
        Check ``config``'s fields, its attribute mapping and its search filter,
        then make sure the directory accepts its bind DN and password.

        Raises:
            ValidationError: a field or the search filter is invalid
            MappingError: the attribute mapping is invalid
            DirectoryUnavailable: we could not connect and bind

        """
        config.get_mapping()
        config.filter = validate_filter(config.filter)
        config.full_clean(validate_unique=False)
        client = self.client_factory(config)
        client.connect()
        client.disconnect()

    def create(self, config: DirectoryConfig) -> DirectoryConfig:
        """
        Validate and save a new directory configuration.

        Raises:
            DirectoryAlreadyConfigured: a directory is already configured
            ValidationError: a field or the search filter is invalid
            MappingError: the attribute mapping is invalid
            DirectoryUnavailable: we could not connect with these settings

        """
        if self.objects.exists():
            msg = "A directory is already configured; update it instead"
            raise DirectoryAlreadyConfigured(msg)
        self._validate(config)
        config.save(using=self.using, force_insert=True)
        logger.info("ldapsync.directory.created id=%s url=%s", config.uuid, config.url)
        return config

    def list(self) -> list[DirectoryConfig]:
        return list(self.objects.order_by("create_at", "pk"))

    def get_by_id(self, directory_id: Any) -> DirectoryConfig:
        """
        Return the directory configuration whose ``uuid`` is ``directory_id``.

        Raises:
            NotFound: there is no such configuration

        """
        try:
            return self.objects.get(uuid=directory_id)
        except (DirectoryConfig.DoesNotExist, ValidationError) as e:
            msg = f"No directory with id {directory_id}"
            raise NotFound(msg) from e

    def update(self, directory_id: Any, config: DirectoryConfig) -> DirectoryConfig:
        """
        Replace the stored configuration ``directory_id`` with ``config``.

        The stored record keeps its identity and creation time.  If
        ``config.password`` is blank, the stored password is kept.  Any of
        :py:attr:`PATCH_FIELDS` that changed are written on their own before
        the whole record is saved.

        Raises:
            NotFound: there is no such configuration
            ValidationError: a field or the search filter is invalid
            MappingError: the attribute mapping is invalid
            DirectoryUnavailable: we could not connect with the new settings

        """
        old = self.get_by_id(directory_id)
        if not config.password:
            config.password = old.password
        self._validate(config)
        config.pk = old.pk
        config.uuid = old.uuid
        config.create_at = old.create_at
        config.created_by = old.created_by
        changed = [
            name
            for name in self.PATCH_FIELDS
            if getattr(config, name) != getattr(old, name)
        ]
        try:
            with transaction.atomic(using=self.using):
                for name in changed:
                    setattr(old, name, getattr(config, name))
                    old.save(using=self.using, update_fields=[name, "update_at"])
                config.save(using=self.using, force_update=True)
        except DatabaseError as e:
            msg = f"Could not update directory {directory_id}: {e}"
            raise StorageError(msg) from e
        logger.info(
            "ldapsync.directory.updated id=%s patched=%s",
            config.uuid,
            ",".join(changed) or "-",
        )
        return config

    def delete(self, directory_id: Any) -> None:
        """
        Delete the stored configuration ``directory_id``.

        Raises:
            NotFound: there is no such configuration

        """
        config = self.get_by_id(directory_id)
        self.cancel_sync(directory_id)
        config.delete(using=self.using)
        logger.info("ldapsync.directory.deleted id=%s", directory_id)

    # ------------------------------------------------------------
    # Status
    # ------------------------------------------------------------

    def get_active(self, require_enabled: bool = True) -> DirectoryConfig:
        """
        Return the directory configuration.

        Keyword Args:
            require_enabled: raise :py:exc:`DirectoryDisabled` if the
                configuration is not enabled

        Raises:
            DirectoryNotConfigured: no directory has been configured
            DirectoryDisabled: ``require_enabled`` is set and the directory is
                not enabled

        """
        configs = self.list()
        if not configs:
            msg = "Save the LDAP configuration first"
            raise DirectoryNotConfigured(msg)
        if len(configs) > 1:
            logger.warning(
                "ldapsync.directory.multiple count=%d using=%s",
                len(configs),
                configs[0].uuid,
            )
        config = configs[0]
        if require_enabled and not config.enable:
            msg = "Enable the LDAP configuration first"
            raise DirectoryDisabled(msg)
        return config

    def check_status(self) -> bool:
        """
        Return ``True`` if a directory is configured and enabled.
        """
        try:
            self.get_active()
        except (DirectoryNotConfigured, DirectoryDisabled):
            return False
        return True

    # ------------------------------------------------------------
    # Steps shared by every mode
    # ------------------------------------------------------------

    def _connect(self, config: DirectoryConfig) -> DirectoryClient:
        client = self.client_factory(config)
        client.connect()
        return client

    def _search(
        self,
        client: DirectoryClient,
        config: DirectoryConfig,
        mapping: AttributeMapping,
        cancel: threading.Event | None = None,
    ):
        return client.search(
            config.dn,
            config.filter,
            config.size_limit,
            config.time_limit,
            mapping.attributes,
            cancel=cancel,
        )

    def _user_filter(self, config: DirectoryConfig, username: str) -> str:
        attribute = config.get_mapping().attribute_for("name")
        if attribute is None:
            msg = "The attribute mapping has no attribute for Name"
            raise MappingError(msg)
        return build_user_filter(attribute, username)

    def _exists(self, imported: ImportedUser) -> bool:
        return self.provisioner.exists(imported)

    # ------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------

    def test_connect(self, config: DirectoryConfig) -> int:
        """
        Connect with the (possibly unsaved) settings in ``config`` and run its
        search.

        Raises:
            DirectoryDisabled: ``config`` is not enabled
            MappingError: the attribute mapping is invalid
            DirectoryUnavailable: the connection or the search failed

        Returns:
            The number of entries the search found.

        """
        if not config.enable:
            msg = "Enable the LDAP configuration first"
            raise DirectoryDisabled(msg)
        mapping = config.get_mapping()
        with self._connect(config) as client:
            entries = self._search(client, config, mapping)
        logger.info("ldapsync.directory.test_connect url=%s found=%d", config.url, len(entries))
        return len(entries)

    def _login(self, config: DirectoryConfig, username: str, password: str) -> None:
        user_filter = self._user_filter(config, username)
        with self._connect(config) as client:
            client.login(
                config.dn,
                user_filter,
                password,
                config.size_limit,
                config.time_limit,
            )

    def test_login(self, username: str, password: str) -> None:
        """
        Check that ``username`` can bind to the configured directory with
        ``password``.  The directory need not be enabled.

        Raises:
            DirectoryNotConfigured: no directory has been configured
            InvalidCredentials: no such user, or the password is wrong
            DirectoryUnavailable: the directory could not be reached

        """
        config = self.get_active(require_enabled=False)
        self._login(config, username, password)

    def login(self, user: User, password: str) -> None:
        """
        Authenticate the directory user ``user`` against the enabled
        directory.

        Raises:
            InvalidCredentials: ``user`` did not come from the directory, or
                the directory rejected the password
            DirectoryNotConfigured: no directory has been configured
            DirectoryDisabled: the directory is not enabled
            DirectoryUnavailable: the directory could not be reached

        """
        if user.type != User.LDAP:
            msg = f"{user.name} is not a directory user"
            raise InvalidCredentials(msg)
        config = self.get_active()
        self._login(config, user.name, password)

    # ------------------------------------------------------------
    # Import
    # ------------------------------------------------------------

    def get_ldap_users(self) -> "list[ImportedUser]":
        """
        List the users in the directory for the caller to choose from.
        Entries with no name are left out; users that already exist locally
        have ``available`` set to ``False``.

        Raises:
            DirectoryNotConfigured: no directory has been configured
            DirectoryDisabled: the directory is not enabled
            MappingError: the attribute mapping is invalid
            DirectoryUnavailable: the connection or the search failed

        """
        config = self.get_active()
        mapping = config.get_mapping()
        with self._connect(config) as client:
            entries = self._search(client, config, mapping)
        users = []
        for entry in entries:
            imported = mapping.apply(entry)
            if not imported.name:
                continue
            imported.available = not self._exists(imported)
            users.append(imported)
        return users

    def import_users(self, candidates: Iterable[ImportedUser]) -> ImportResult:
        """
        Provision each of ``candidates``, one transaction per user.

        A blank nick name defaults to the name, and a blank email to
        ``<name>@<DEFAULT_EMAIL_DOMAIN>``.  Candidates with no name, marked
        unavailable, already present locally, or repeated in ``candidates``
        are skipped.

        Returns:
            Which candidates were created, failed or were skipped.

        """
        result = ImportResult()
        seen: set[str] = set()
        domain = get_setting("DEFAULT_EMAIL_DOMAIN")
        for candidate in candidates:
            name = candidate.name.strip()
            if not name:
                result.skipped.append(candidate.name)
                continue
            imported = ImportedUser(
                name=name,
                nick_name=candidate.nick_name.strip() or name,
                email=candidate.email.strip() or f"{name}@{domain}",
            )
            if name in seen or not candidate.available:
                result.skipped.append(name)
                continue
            seen.add(name)
            try:
                exists = self._exists(imported)
            except DatabaseError as e:
                logger.error("ldapsync.import.lookup_failed user=%s error=%s", name, e)
                result.failures.append(name)
                continue
            if exists:
                result.skipped.append(name)
                continue
            try:
                self.provisioner.provision(imported)
            except ProvisioningError as e:
                result.failures.append(e.name)
                continue
            result.success_count += 1
        logger.info(
            "ldapsync.import.finished success=%d failed=%d skipped=%d",
            result.success_count,
            len(result.failures),
            len(result.skipped),
        )
        return result

    # ------------------------------------------------------------
    # Background sync
    # ------------------------------------------------------------

    def sync(self, directory_id: Any) -> SyncHandle:
        """
        Connect to directory ``directory_id`` and provision its new users in
        the background.

        Only the connection is made before returning, so connection errors
        reach the caller.  Everything after that is logged, and the report
        or error is left on the returned handle's future.

        Raises:
            NotFound: there is no such directory configuration
            DirectoryUnavailable: we could not connect
            SyncInProgress: a sync of this directory is already running

        Returns:
            A handle for the background job.

        """
        config = self.get_by_id(directory_id)
        client = self._connect(config)
        try:
            handle = self.runner.submit(
                str(config.uuid),
                self._run_sync,
                config,
                client,
                on_cancel=client.disconnect,
            )
        except (LdapSyncError, RuntimeError):
            client.disconnect()
            raise
        logger.info("ldapsync.sync.started directory=%s", config.uuid)
        return handle

    def _provision_entries(
        self,
        entries,
        mapping: AttributeMapping,
        report: SyncReport,
        cancel: threading.Event,
    ) -> None:
        for entry in entries:
            if cancel.is_set():
                report.cancelled = True
                return
            imported = mapping.apply(entry)
            if not imported.name or not imported.email:
                continue
            try:
                exists = self._exists(imported)
            except DatabaseError as e:
                logger.error("ldapsync.sync.lookup_failed user=%s error=%s", imported.name, e)
                report.failed += 1
                continue
            if exists:
                continue
            try:
                self.provisioner.provision(imported)
            except ProvisioningError:
                report.failed += 1
                continue
            report.inserted += 1

    def _run_sync(
        self,
        config: DirectoryConfig,
        client: DirectoryClient,
        cancel: threading.Event,
    ) -> SyncReport:
        close_old_connections()
        report = SyncReport()
        try:
            mapping = config.get_mapping()
            with client:
                entries = self._search(client, config, mapping, cancel=cancel)
            report.found = len(entries)
            self._provision_entries(entries, mapping, report, cancel)
        except (LdapSyncError, DatabaseError) as e:
            logger.error("ldapsync.sync.failed directory=%s error=%s", config.uuid, e)
            raise
        finally:
            close_old_connections()
        if report.cancelled:
            logger.warning(
                "ldapsync.sync.cancelled directory=%s found=%d inserted=%d",
                config.uuid,
                report.found,
                report.inserted,
            )
        else:
            logger.info(
                "ldapsync.sync.finished directory=%s found=%d inserted=%d",
                config.uuid,
                report.found,
                report.inserted,
            )
        return report

    def cancel_sync(self, directory_id: Any) -> bool:
        """
        Ask a running sync of ``directory_id`` to stop.

        Returns:
            ``True`` if a sync was running.

        """
        cancelled = self.runner.cancel(str(directory_id))
        if cancelled:
            logger.info("ldapsync.sync.cancel_requested directory=%s", directory_id)
        return cancelled

    def is_syncing(self, directory_id: Any) -> bool:
        return self.runner.is_running(str(directory_id))
