# type: ignore
import unittest

from ldapsync.exceptions import MappingError
from ldapsync.mapping import AttributeMapping, DirectoryEntry, ImportedUser
from ldapsync.models import DirectoryConfig, default_mapping


class TestAttributeMapping(unittest.TestCase):

    def setUp(self):
        self.entry = DirectoryEntry(
            dn="uid=alice,ou=users,dc=example,dc=com",
            attributes={
                "uid": ["  alice "],
                "cn": ["Alice Johnson", "Alice J."],
                "mail": ["alice@example.com"],
                "description": [],
            },
        )

    def test_default_mapping(self):
        user = AttributeMapping(default_mapping()).apply(self.entry)
        self.assertEqual(
            user,
            ImportedUser(name="alice", nick_name="Alice Johnson", email="alice@example.com"),
        )

    def test_missing_attribute_leaves_field_empty(self):
        mapping = AttributeMapping({"Name": "uid", "Email": "emailAddress"})
        user = mapping.apply(self.entry)
        self.assertEqual(user.name, "alice")
        self.assertEqual(user.email, "")
        self.assertEqual(user.nick_name, "")

    def test_empty_value_list_leaves_field_empty(self):
        user = AttributeMapping({"NickName": "description"}).apply(self.entry)
        self.assertEqual(user.nick_name, "")

    def test_attribute_lookup_is_exact(self):
        user = AttributeMapping({"Name": "UID"}).apply(self.entry)
        self.assertEqual(user.name, "")

    def test_several_fields_from_one_attribute(self):
        mapping = AttributeMapping({"Name": "uid", "NickName": "uid"})
        user = mapping.apply(self.entry)
        self.assertEqual(user.name, "alice")
        self.assertEqual(user.nick_name, "alice")
        self.assertEqual(mapping.attributes, ["uid"])

    def test_field_name_spellings(self):
        for spelling in ("NickName", "nickName", "nick_name"):
            mapping = AttributeMapping({spelling: "cn"})
            self.assertEqual(mapping.attribute_for("nick_name"), "cn")
            self.assertEqual(mapping.apply(self.entry).nick_name, "Alice Johnson")

    def test_apply_is_pure(self):
        mapping = AttributeMapping(default_mapping())
        self.assertEqual(mapping.apply(self.entry), mapping.apply(self.entry))
        self.assertEqual(self.entry.attributes["uid"], ["  alice "])

    def test_unknown_field_raises_when_built(self):
        with self.assertRaises(MappingError):
            AttributeMapping({"Name": "uid", "Phone": "telephoneNumber"})

    def test_non_string_attribute_raises(self):
        with self.assertRaises(MappingError):
            AttributeMapping({"Name": ["uid"]})
        with self.assertRaises(MappingError):
            AttributeMapping({"Name": ""})

    def test_from_config_json(self):
        mapping = AttributeMapping.from_config('{"Name": "sAMAccountName", "Email": "mail"}')
        self.assertEqual(mapping.attributes, ["sAMAccountName", "mail"])
        self.assertEqual(mapping.attribute_for("Name"), "sAMAccountName")
        self.assertIsNone(mapping.attribute_for("NickName"))

    def test_from_config_invalid_json(self):
        with self.assertRaises(MappingError):
            AttributeMapping.from_config('{"Name": ')
        with self.assertRaises(MappingError):
            AttributeMapping.from_config('["uid"]')

    def test_directory_config_attributes(self):
        config = DirectoryConfig(mapping={"Name": "uid", "NickName": "cn", "Email": "mail"})
        self.assertEqual(config.get_attributes(), ["uid", "cn", "mail"])
        self.assertEqual(config.url, "ldap://:389")
        config.address = "ldap.example.com"
        config.port = 636
        config.tls = True
        self.assertEqual(config.url, "ldaps://ldap.example.com:636")


class TestImportedUser(unittest.TestCase):

    def test_from_dict(self):
        user = ImportedUser.from_dict({"name": "bob", "nickName": "Bob", "email": None})
        self.assertEqual(user, ImportedUser(name="bob", nick_name="Bob", email=""))
        self.assertEqual(user.to_dict()["available"], True)
