"""
Type aliases shared across ldapsync.
"""

from collections.abc import Mapping
from typing import Any

#: A raw search result row from python-ldap: ``(dn, {attribute: [value, ...]})``
LDAPData = tuple[str, dict[str, list[bytes]]]
#: One client-supplied filter term as it arrives from a list endpoint
ConditionData = Mapping[str, Any]
#: The collection of filter terms a list endpoint receives
ConditionsData = list[ConditionData] | Mapping[str, ConditionData]
#: Local field name to directory attribute name
MappingData = dict[str, str]
