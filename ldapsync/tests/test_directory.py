# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests for :py:class:`ldapsync.directory.DirectoryClient`, run against a fake
389 Directory Server provided by python-ldap-faker.
"""

import threading
import unittest

from ldap_faker.unittest import LDAPFakerMixin

from ldapsync.directory import DirectoryClient, build_user_filter, decode_entry
from ldapsync.exceptions import DirectoryUnavailable, InvalidCredentials, SyncCancelled
from ldapsync.models import DirectoryConfig

BASEDN = "ou=users,dc=example,dc=com"
USER_FILTER = "(objectclass=posixAccount)"

ENTRIES = [
    [
        "cn=admin,dc=example,dc=com",
        {
            "cn": [b"admin"],
            "userPassword": [b"admin"],
            "objectclass": [b"simpleSecurityObject", b"organizationalRole", b"top"],
        },
    ],
    [
        "uid=alice,ou=users,dc=example,dc=com",
        {
            "uid": [b"alice"],
            "cn": [b"Alice Johnson"],
            "mail": [b"alice@example.com"],
            "userPassword": [b"alicepw"],
            "jpegPhoto": [b"\xff\xd8\xff\xe0"],
            "objectclass": [b"posixAccount", b"top"],
        },
    ],
    [
        "uid=bob,ou=users,dc=example,dc=com",
        {
            "uid": [b"bob"],
            "cn": [b"Bob Smith"],
            "mail": [b"bob@example.com"],
            "userPassword": [b"bobpw"],
            "objectclass": [b"posixAccount", b"top"],
        },
    ],
    [
        "uid=charlie,ou=users,dc=example,dc=com",
        {
            "uid": [b"charlie"],
            "cn": [b"Charlie Brown"],
            "userPassword": [b"charliepw"],
            "objectclass": [b"posixAccount", b"top"],
        },
    ],
]


class TestHelpers(unittest.TestCase):

    def test_build_user_filter_escapes_username(self):
        self.assertEqual(build_user_filter("uid", "alice"), "(uid=alice)")
        self.assertEqual(build_user_filter("uid", "a*)(uid=*"), r"(uid=a\2a\29\28uid=\2a)")

    def test_decode_entry_drops_binary_values(self):
        entry = decode_entry(
            ("uid=alice,dc=example,dc=com", {"uid": [b"alice"], "jpegPhoto": [b"\xff\xd8"]})
        )
        self.assertEqual(entry.dn, "uid=alice,dc=example,dc=com")
        self.assertEqual(entry.values("uid"), ["alice"])
        self.assertEqual(entry.values("jpegPhoto"), [])
        self.assertEqual(entry.values("mail"), [])

    def test_from_config(self):
        config = DirectoryConfig(
            address="ldap.example.com",
            port=636,
            tls=True,
            username="cn=admin,dc=example,dc=com",
            password="secret",
        )
        client = DirectoryClient.from_config(config)
        self.assertEqual(client.url, "ldaps://ldap.example.com:636")
        self.assertEqual(client.username, "cn=admin,dc=example,dc=com")
        self.assertFalse(client.connected)

    def test_connection_before_connect_raises(self):
        client = DirectoryClient("ldap://localhost:389")
        with self.assertRaises(DirectoryUnavailable):
            client.search(BASEDN, USER_FILTER)

    def test_invalid_tls_verify(self):
        client = DirectoryClient("ldap://localhost:389", tls_verify="sometimes")
        with self.assertRaises(ValueError):
            client._connect("", "")


class TestDirectoryClientWithFaker(LDAPFakerMixin, unittest.TestCase):

    ldap_modules = ["ldapsync"]

    def setUp(self):
        super().setUp()
        self.server_factory.default.raw_objects.clear()
        self.server_factory.default.objects.clear()
        for dn, attrs in ENTRIES:
            self.server_factory.default.register_object((dn, attrs))
        self.client = DirectoryClient(
            "ldap://localhost:389",
            "cn=admin,dc=example,dc=com",
            "admin",
            use_starttls=False,
            tls_verify="never",
        )

    def tearDown(self):
        self.client.disconnect()
        super().tearDown()

    def test_connect(self):
        self.client.connect()
        self.assertTrue(self.client.connected)
        self.client.disconnect()
        self.assertFalse(self.client.connected)

    def test_connect_with_wrong_password(self):
        client = DirectoryClient("ldap://localhost:389", "cn=admin,dc=example,dc=com", "wrong")
        with self.assertRaises(InvalidCredentials):
            client.connect()
        self.assertFalse(client.connected)

    def test_context_manager_disconnects(self):
        with self.client as client:
            self.assertTrue(client.connected)
        self.assertFalse(self.client.connected)

    def test_search(self):
        self.client.connect()
        entries = self.client.search(BASEDN, USER_FILTER, attributes=["uid", "cn", "mail"])
        by_dn = {entry.dn: entry for entry in entries}
        self.assertEqual(len(entries), 3)
        alice = by_dn["uid=alice,ou=users,dc=example,dc=com"]
        self.assertEqual(alice.values("uid"), ["alice"])
        self.assertEqual(alice.values("cn"), ["Alice Johnson"])
        self.assertEqual(by_dn["uid=charlie,ou=users,dc=example,dc=com"].values("mail"), [])

    def test_search_with_no_matches(self):
        self.client.connect()
        self.assertEqual(self.client.search(BASEDN, "(uid=nobody)"), [])

    def test_search_size_limit(self):
        self.client.connect()
        self.assertEqual(len(self.client.search(BASEDN, USER_FILTER, sizelimit=2)), 2)

    def test_search_cancelled(self):
        self.client.connect()
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(SyncCancelled):
            self.client.search(BASEDN, USER_FILTER, cancel=cancel)

    def test_login(self):
        self.client.connect()
        self.client.login(BASEDN, build_user_filter("uid", "bob"), "bobpw")

    def test_login_wrong_password(self):
        self.client.connect()
        with self.assertRaises(InvalidCredentials):
            self.client.login(BASEDN, build_user_filter("uid", "bob"), "alicepw")

    def test_login_unknown_user(self):
        self.client.connect()
        with self.assertRaises(InvalidCredentials):
            self.client.login(BASEDN, build_user_filter("uid", "nobody"), "pw")

    def test_login_ambiguous_filter(self):
        self.client.connect()
        with self.assertRaises(InvalidCredentials):
            self.client.login(BASEDN, USER_FILTER, "alicepw")

    def test_login_empty_password(self):
        self.client.connect()
        with self.assertRaises(InvalidCredentials):
            self.client.login(BASEDN, build_user_filter("uid", "bob"), "")
