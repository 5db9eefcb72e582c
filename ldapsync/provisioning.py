"""
Provision users from the directory, and run directory syncs in the background.

Provisioning a user means creating the local :py:class:`~ldapsync.models.User`
and binding it to the default role.  The two writes share one transaction, so
either both exist afterwards or neither does.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS, DatabaseError, transaction

from .conf import get_setting
from .exceptions import NotFound, ProvisioningError, SyncInProgress
from .mapping import ImportedUser
from .models import RoleBinding, User
from .services import RoleBindingService, UserService, role_binding_name

logger = logging.getLogger("django-ldapsync")


@dataclass
class ImportResult:
    """
    The outcome of importing a batch of users.

    ``failures`` and ``skipped`` hold user names.  Users are skipped when they
    have no name or already exist locally.
    """

    success_count: int = 0
    failures: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


@dataclass
class SyncReport:
    """
    What a directory sync did: how many entries the search returned, and how
    many users were inserted.
    """

    found: int = 0
    inserted: int = 0
    failed: int = 0
    cancelled: bool = False


class Provisioner:
    """
    Create directory users and their default role bindings atomically.

    Keyword Args:
        users: the service to create users with
        role_bindings: the service to create role bindings with
        using: the database alias to write to

    """

    def __init__(
        self,
        users: UserService | None = None,
        role_bindings: RoleBindingService | None = None,
        using: str = DEFAULT_DB_ALIAS,
    ) -> None:
        self.users = users or UserService()
        self.role_bindings = role_bindings or RoleBindingService()
        self.using = using

    def exists(self, user: ImportedUser) -> bool:
        """
        Return ``True`` if a local user already has ``user``'s name or email.
        """
        for key in (user.name, user.email):
            if not key:
                continue
            try:
                self.users.get_by_name_or_email(key, using=self.using)
            except NotFound:
                continue
            return True
        return False

    def provision(self, imported: ImportedUser, role: str | None = None) -> User:
        """
        Create a :py:data:`~ldapsync.models.User.LDAP` user from ``imported``
        and bind it to ``role``.

        Args:
            imported: the directory user to create

        Keyword Args:
            role: the role to bind; defaults to ``LDAPSYNC["DEFAULT_ROLE"]``

        Raises:
            ProvisioningError: either write failed; neither was kept

        Returns:
            The new user.

        """
        role = role or get_setting("DEFAULT_ROLE")
        user = User(
            name=imported.name,
            nick_name=imported.nick_name or imported.name,
            email=imported.email,
            type=User.LDAP,
        )
        binding = RoleBinding(
            name=role_binding_name(role, imported.name),
            subject_kind="User",
            subject_name=imported.name,
            role_ref=role,
            created_by=get_setting("ROLE_BINDING_CREATED_BY"),
        )
        try:
            with transaction.atomic(using=self.using):
                self.users.create(user, using=self.using)
                self.role_bindings.create_role_binding(binding, using=self.using)
        except (DatabaseError, ValidationError) as e:
            logger.error(
                "ldapsync.provision.failed user=%s role=%s error=%s",
                imported.name,
                role,
                e,
            )
            raise ProvisioningError(imported.name) from e
        logger.info("ldapsync.provision.success user=%s role=%s", user.name, role)
        return user


@dataclass
class SyncHandle:
    """
    A running background sync.

    Args:
        key: the directory the sync belongs to
        future: resolves to the job's result
        cancel: set this to ask the job to stop

    """

    key: str
    future: Future
    cancel: threading.Event

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float | None = None) -> Any:
        return self.future.result(timeout=timeout)


class SyncRunner:
    """
    Run sync jobs on a worker pool, at most one per key at a time.

    Keyword Args:
        executor: the pool to submit jobs to; defaults to a
            :py:class:`~concurrent.futures.ThreadPoolExecutor` with
            ``LDAPSYNC["SYNC_WORKERS"]`` threads, created on first use

    """

    def __init__(self, executor: Executor | None = None) -> None:
        self._executor = executor
        self._lock = threading.RLock()
        self._running: dict[str, SyncHandle] = {}

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=int(get_setting("SYNC_WORKERS")),
                thread_name_prefix="ldapsync",
            )
        return self._executor

    def submit(
        self,
        key: str,
        func: Callable[..., Any],
        *args: Any,
        on_cancel: Callable[[], Any] | None = None,
    ) -> SyncHandle:
        """
        Schedule ``func(*args, cancel=<event>)`` unless a job for ``key`` is
        still running.

        Args:
            key: the job's key; only one job per key runs at a time
            func: the job

        Keyword Args:
            on_cancel: called if the job is cancelled before it starts, to
                release anything that was acquired for it

        Raises:
            SyncInProgress: a job for ``key`` is still running

        Returns:
            A handle for the new job.

        """
        # The handle is registered, and its future filled in, under one hold of
        # the lock.  The lock is re-entrant because an inline executor runs the
        # job, which may ask is_running(), before submit() returns.
        with self._lock:
            if key in self._running:
                msg = f"A sync for directory {key} is already running"
                raise SyncInProgress(msg)
            cancel = threading.Event()
            handle = SyncHandle(key=key, future=Future(), cancel=cancel)
            self._running[key] = handle
            try:
                future = self.executor.submit(func, *args, cancel=cancel)
            except RuntimeError:
                del self._running[key]
                raise
            handle.future = future
        future.add_done_callback(lambda f: self._finish(handle, f, on_cancel))
        return handle

    def _finish(
        self,
        handle: SyncHandle,
        future: Future,
        on_cancel: Callable[[], Any] | None,
    ) -> None:
        with self._lock:
            if self._running.get(handle.key) is handle:
                del self._running[handle.key]
        if future.cancelled() and on_cancel is not None:
            on_cancel()
            logger.info("ldapsync.sync.cancelled_before_start key=%s", handle.key)

    def is_running(self, key: str) -> bool:
        with self._lock:
            return key in self._running

    def cancel(self, key: str) -> bool:
        """
        Ask the running job for ``key`` to stop.  A job that has not started
        yet is dropped from the pool.

        Returns:
            ``True`` if there was a job to cancel.

        """
        with self._lock:
            handle = self._running.get(key)
        if handle is None:
            return False
        handle.cancel.set()
        handle.future.cancel()
        return True
