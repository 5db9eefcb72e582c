"""
Map directory entry attributes onto local user fields.

A directory's mapping is stored as a JSON object of local field name to
directory attribute name::

    {"Name": "uid", "NickName": "cn", "Email": "mail"}

Local field names may be given in either CamelCase or snake_case.  Each one is
resolved to a setter when the :py:class:`AttributeMapping` is built, so a
mapping that names a field we don't know about fails right away instead of
being silently ignored during a sync.
"""

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any

from django.utils.text import camel_case_to_spaces

from .exceptions import MappingError
from .typing import MappingData


@dataclass
class DirectoryEntry:
    """
    One directory search result.

    Args:
        dn: the distinguished name of the entry
        attributes: attribute name to list of decoded values

    """

    dn: str
    attributes: dict[str, list[str]]

    def values(self, name: str) -> list[str]:
        return self.attributes.get(name, [])


@dataclass
class ImportedUser:
    """
    A user as read from the directory, before it has been provisioned.
    ``available`` is ``False`` when a local user with this name or email
    already exists.
    """

    name: str = ""
    nick_name: str = ""
    email: str = ""
    available: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImportedUser":
        return cls(
            name=data.get("name") or "",
            nick_name=data.get("nick_name") or data.get("nickName") or "",
            email=data.get("email") or "",
            available=data.get("available", True),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


Setter = Callable[[ImportedUser, str], None]


def _setter(field: str) -> Setter:
    def set_value(user: ImportedUser, value: str) -> None:
        setattr(user, field, value)

    return set_value


#: Local field name to the setter that assigns it on an :py:class:`ImportedUser`
SETTERS: dict[str, Setter] = {
    "name": _setter("name"),
    "nick_name": _setter("nick_name"),
    "email": _setter("email"),
}


def normalize_local_field(name: str) -> str:
    """
    Convert ``NickName``, ``nickName`` or ``nick_name`` to ``nick_name``.
    """
    return camel_case_to_spaces(name).replace(" ", "_")


class AttributeMapping:
    """
    A validated local-field to directory-attribute table.

    Args:
        mapping: local field name to directory attribute name

    Raises:
        MappingError: ``mapping`` names a local field with no setter, or maps
            a field to something other than a non-empty string

    """

    def __init__(self, mapping: MappingData) -> None:
        self._bindings: list[tuple[str, str, Setter]] = []
        for local_field, attribute in mapping.items():
            field = normalize_local_field(local_field)
            if field not in SETTERS:
                msg = f'"{local_field}" is not a field we can map directory attributes to'
                raise MappingError(msg)
            if not isinstance(attribute, str) or not attribute:
                msg = f'The directory attribute for "{local_field}" must be a non-empty string'
                raise MappingError(msg)
            self._bindings.append((field, attribute, SETTERS[field]))

    @classmethod
    def from_config(cls, value: str | MappingData) -> "AttributeMapping":
        """
        Build a mapping from a stored value, which is either a dict or a JSON
        string encoding one.

        Raises:
            MappingError: ``value`` is not valid JSON or not an object

        """
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                msg = f"Attribute mapping is not valid JSON: {e}"
                raise MappingError(msg) from e
        if not isinstance(value, Mapping):
            msg = "Attribute mapping must be an object of local field to attribute"
            raise MappingError(msg)
        return cls(dict(value))

    @property
    def attributes(self) -> list[str]:
        """
        The distinct directory attributes this mapping reads, in mapping order.
        """
        seen: list[str] = []
        for _, attribute, _ in self._bindings:
            if attribute not in seen:
                seen.append(attribute)
        return seen

    def attribute_for(self, field: str) -> str | None:
        """
        Return the directory attribute mapped to local field ``field``, or
        ``None`` if it is not mapped.
        """
        field = normalize_local_field(field)
        for local_field, attribute, _ in self._bindings:
            if local_field == field:
                return attribute
        return None

    def apply(self, entry: DirectoryEntry) -> ImportedUser:
        """
        Build an :py:class:`ImportedUser` from ``entry``.

        Every mapped field whose attribute has at least one value is set to the
        first value, stripped of surrounding whitespace.  Fields whose
        attribute is absent stay empty.

        Args:
            entry: the directory entry to read

        Returns:
            A new :py:class:`ImportedUser`.

        """
        user = ImportedUser()
        for _, attribute, setter in self._bindings:
            values: Sequence[str] = entry.values(attribute)
            if values:
                setter(user, values[0].strip())
        return user
