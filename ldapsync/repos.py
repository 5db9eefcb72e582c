"""
Image registry records.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS, DatabaseError, IntegrityError, transaction

from .exceptions import NotFound, StorageError
from .models import ImageRepo
from .query import PageResult, search
from .typing import ConditionsData

logger = logging.getLogger("django-ldapsync")

#: The fields that hold a registry's credentials
CREDENTIAL_FIELDS: tuple[str, ...] = ("username", "password")


class ImageRepoService:
    """
    Search, create, update and delete :py:class:`~ldapsync.models.ImageRepo`
    records.

    Keyword Args:
        using: the database alias to read and write

    """

    #: Fields written with a targeted update, before the full save, when
    #: :py:meth:`update_repo` sees that they changed
    PATCH_FIELDS: tuple[str, ...] = ("allow_anonymous", "auth")

    def __init__(self, using: str = DEFAULT_DB_ALIAS) -> None:
        self.using = using

    @property
    def objects(self):
        return ImageRepo.objects.using(self.using)

    def search(
        self,
        page_num: int,
        page_size: int,
        conditions: ConditionsData | None = None,
    ) -> PageResult[ImageRepo]:
        return search(self.objects.all(), conditions, page_num, page_size)

    def list(self) -> list[ImageRepo]:
        return list(self.objects.order_by("name"))

    def get_by_name(self, name: str) -> ImageRepo:
        """
        Raises:
            NotFound: there is no registry called ``name``

        """
        try:
            return self.objects.get(name=name)
        except ImageRepo.DoesNotExist as e:
            msg = f"No image repository named {name!r}"
            raise NotFound(msg) from e

    def create(self, repo: ImageRepo) -> ImageRepo:
        """
        Validate and insert ``repo``.  Credentials are dropped unless
        ``repo.auth`` is set.

        Raises:
            ValidationError: ``repo`` is not valid, or its name is taken

        """
        if not repo.auth:
            for name in CREDENTIAL_FIELDS:
                setattr(repo, name, "")
        repo.full_clean()
        try:
            repo.save(using=self.using, force_insert=True)
        except IntegrityError as e:
            raise ValidationError({"name": str(e)}) from e
        logger.info("ldapsync.repo.created name=%s type=%s", repo.name, repo.type)
        return repo

    def delete(self, name: str) -> None:
        repo = self.get_by_name(name)
        repo.delete(using=self.using)
        logger.info("ldapsync.repo.deleted name=%s", name)

    def _changed_fields(self, old: ImageRepo, repo: ImageRepo) -> "list[str]":
        changed = [
            name for name in self.PATCH_FIELDS if getattr(old, name) != getattr(repo, name)
        ]
        if not repo.auth:
            # Turning auth off, or leaving it off, always wipes credentials
            for name in CREDENTIAL_FIELDS:
                setattr(repo, name, "")
            if any(getattr(old, name) for name in CREDENTIAL_FIELDS):
                changed.extend(CREDENTIAL_FIELDS)
        elif old.auth and not repo.password:
            # A blank password on an authenticated registry means "unchanged"
            repo.username = repo.username or old.username
            repo.password = old.password
        elif not old.auth:
            changed.extend(CREDENTIAL_FIELDS)
        return changed

    def update_repo(self, name: str, repo: ImageRepo) -> ImageRepo:
        """
        Replace the registry called ``name`` with ``repo``.

        Credentials are only rewritten when they need to be:

        * if ``repo.auth`` is off, the stored credentials are cleared;
        * if ``auth`` was just turned on, the new credentials are written;
        * if ``auth`` stays on and ``repo.password`` is blank, the stored
          credentials are kept.

        Changed ``allow_anonymous``, ``auth`` and credential fields are
        written with targeted updates before the full save.

        Raises:
            NotFound: there is no registry called ``name``
            ValidationError: ``repo`` is not valid
            StorageError: the database write failed

        """
        old = self.get_by_name(name)
        changed = self._changed_fields(old, repo)
        repo.pk = old.pk
        repo.uuid = old.uuid
        repo.create_at = old.create_at
        repo.created_by = old.created_by
        repo.full_clean(validate_unique=False)
        try:
            with transaction.atomic(using=self.using):
                if changed:
                    for field_name in changed:
                        setattr(old, field_name, getattr(repo, field_name))
                    old.save(using=self.using, update_fields=[*changed, "update_at"])
                repo.save(using=self.using, force_update=True)
        except DatabaseError as e:
            msg = f"Could not update image repository {name!r}: {e}"
            raise StorageError(msg) from e
        logger.info(
            "ldapsync.repo.updated name=%s patched=%s",
            repo.name,
            ",".join(changed) or "-",
        )
        return repo
