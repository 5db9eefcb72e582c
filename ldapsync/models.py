"""
Django models backing the dashboard's list endpoints and directory sync.

Every model records ``create_at`` and ``update_at`` timestamps.  List
endpoints order by ``create_at``, newest first.  Each model that supports the
"quick" search condition lists the text fields it matches against in
``quick_search_fields``.
"""

import uuid
from typing import ClassVar

from django.db import models
from django.utils import timezone

from .mapping import AttributeMapping
from .typing import MappingData


def default_mapping() -> MappingData:
    return {"Name": "uid", "NickName": "cn", "Email": "mail"}


class BaseModel(models.Model):
    """
    Columns shared by every record.
    """

    #: Fields that the ``quick`` search condition matches against
    quick_search_fields: ClassVar[tuple[str, ...]] = ()

    uuid = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    create_at = models.DateTimeField(default=timezone.now, editable=False)
    update_at = models.DateTimeField(auto_now=True)
    created_by = models.CharField(max_length=128, blank=True, default="")

    class Meta:
        abstract = True


class User(BaseModel):
    """
    A local identity record.  Users created from the directory have ``type``
    set to :py:attr:`LDAP`.
    """

    LOCAL = "LOCAL"
    LDAP = "LDAP"
    TYPE_CHOICES: ClassVar[list[tuple[str, str]]] = [
        (LOCAL, "Local"),
        (LDAP, "LDAP"),
    ]

    quick_search_fields = ("name", "nick_name", "email")

    name = models.CharField(max_length=128, unique=True)
    nick_name = models.CharField(max_length=128, blank=True, default="")
    email = models.EmailField(max_length=254, unique=True)
    type = models.CharField(max_length=16, choices=TYPE_CHOICES, default=LOCAL)
    is_admin = models.BooleanField(default=False)

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"

    def __str__(self) -> str:
        return self.name


class RoleBinding(BaseModel):
    """
    Binds a subject (a user) to a role by name.
    """

    quick_search_fields = ("name", "subject_name", "role_ref")

    name = models.CharField(max_length=255, unique=True)
    subject_kind = models.CharField(max_length=32, default="User")
    subject_name = models.CharField(max_length=128)
    role_ref = models.CharField(max_length=128)

    class Meta:
        verbose_name = "role binding"
        verbose_name_plural = "role bindings"

    def __str__(self) -> str:
        return self.name


class DirectoryConfig(BaseModel):
    """
    Connection, search and attribute mapping settings for the LDAP directory
    users are provisioned from.  Only one of these is expected to exist.
    """

    address = models.CharField(max_length=255)
    port = models.PositiveIntegerField(default=389)
    username = models.CharField("Bind DN", max_length=255, blank=True, default="")
    password = models.CharField(max_length=255, blank=True, default="")
    tls = models.BooleanField(default=False)
    enable = models.BooleanField(default=False)
    dn = models.CharField("Base DN", max_length=255)
    filter = models.CharField(max_length=1024, default="(objectClass=person)")
    size_limit = models.PositiveIntegerField(default=0)
    time_limit = models.PositiveIntegerField(default=30)
    mapping = models.JSONField(default=default_mapping)

    class Meta:
        verbose_name = "directory"
        verbose_name_plural = "directories"

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"

    @property
    def url(self) -> str:
        scheme = "ldaps" if self.tls else "ldap"
        return f"{scheme}://{self.address}:{self.port}"

    def get_mapping(self) -> AttributeMapping:
        """
        Build the :py:class:`~ldapsync.mapping.AttributeMapping` for this
        directory.

        Raises:
            MappingError: the stored mapping is malformed

        Returns:
            The attribute mapping.

        """
        return AttributeMapping.from_config(self.mapping)

    def get_attributes(self) -> list[str]:
        """
        Return the directory attributes our searches need to request.
        """
        return self.get_mapping().attributes


class ImageRepo(BaseModel):
    """
    An image registry clusters can pull from.
    """

    quick_search_fields = ("name",)

    name = models.CharField(max_length=128, unique=True)
    type = models.CharField(max_length=32)
    end_point = models.CharField(max_length=255)
    download_url = models.CharField(max_length=255, blank=True, default="")
    repo_name = models.CharField(max_length=255, blank=True, default="")
    version = models.CharField(max_length=32, blank=True, default="")
    auth = models.BooleanField(default=False)
    allow_anonymous = models.BooleanField(default=False)
    username = models.CharField(max_length=255, blank=True, default="")
    password = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        verbose_name = "image repository"
        verbose_name_plural = "image repositories"

    def __str__(self) -> str:
        return self.name


class OperationLog(BaseModel):
    quick_search_fields = ("operator", "operation", "detail")

    operator = models.CharField(max_length=128)
    operation = models.CharField(max_length=255)
    detail = models.TextField(blank=True, default="")


class LoginLog(BaseModel):
    quick_search_fields = ("user_name", "ip", "city")

    user_name = models.CharField(max_length=128)
    ip = models.CharField(max_length=64, blank=True, default="")
    city = models.CharField(max_length=128, blank=True, default="")
