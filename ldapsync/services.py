"""
Identity and role binding services.

These are the write paths the directory pipeline provisions through.  Every
method takes a ``using`` database alias so that callers can run it inside
their own :py:func:`django.db.transaction.atomic` block on that database.
"""

from django.db import DEFAULT_DB_ALIAS
from django.db.models import Q

from .exceptions import NotFound
from .models import RoleBinding, User
from .query import PageResult, search
from .typing import ConditionsData


def role_binding_name(role: str, user_name: str) -> str:
    return f"role-binding-{role}-{user_name}"


class UserService:
    """
    Create and look up local users.
    """

    def create(self, user: User, using: str = DEFAULT_DB_ALIAS) -> User:
        """
        Validate and insert ``user``.

        Raises:
            django.core.exceptions.ValidationError: ``user`` is not valid,
                including a name or email that is already taken
            django.db.DatabaseError: the insert failed

        """
        user.full_clean()
        user.save(using=using, force_insert=True)
        return user

    def get_by_name_or_email(self, name: str, using: str = DEFAULT_DB_ALIAS) -> User:
        """
        Return the user whose name or email is ``name``.

        Raises:
            NotFound: no user has that name or email

        """
        user = (
            User.objects.using(using)
            .filter(Q(name=name) | Q(email=name))
            .order_by("pk")
            .first()
        )
        if user is None:
            msg = f"No user with name or email {name!r}"
            raise NotFound(msg)
        return user

    def search(
        self,
        page_num: int,
        page_size: int,
        conditions: ConditionsData | None = None,
        using: str = DEFAULT_DB_ALIAS,
    ) -> PageResult[User]:
        return search(User.objects.using(using), conditions, page_num, page_size)


class RoleBindingService:
    """
    Create role bindings.
    """

    def create_role_binding(
        self, binding: RoleBinding, using: str = DEFAULT_DB_ALIAS
    ) -> RoleBinding:
        """
        Validate and insert ``binding``.

        Raises:
            django.core.exceptions.ValidationError: ``binding`` is not valid
            django.db.DatabaseError: the insert failed

        """
        binding.full_clean()
        binding.save(using=using, force_insert=True)
        return binding

    def list_by_subject(self, user_name: str, using: str = DEFAULT_DB_ALIAS) -> list[RoleBinding]:
        return list(
            RoleBinding.objects.using(using)
            .filter(subject_kind="User", subject_name=user_name)
            .order_by("create_at", "pk")
        )
