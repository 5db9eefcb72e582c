"""
A small python-ldap client for the directory users are provisioned from.

This holds one connection bound as the directory's service account.  It
searches with simple paged results, so large directories don't run into
server size limits, and it can check a user's password by binding as them on
a second connection.
"""

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ldap.controls import SimplePagedResultsControl
from ldap.filter import filter_format

from ldapsync import ldap

from .conf import get_setting
from .exceptions import DirectoryUnavailable, InvalidCredentials, SyncCancelled
from .mapping import DirectoryEntry
from .typing import LDAPData

if TYPE_CHECKING:
    from .models import DirectoryConfig

logger = logging.getLogger("django-ldapsync")


def build_user_filter(attribute: str, username: str) -> str:
    """
    Return a filter matching entries whose ``attribute`` equals ``username``,
    escaping any filter metacharacters in ``username``.
    """
    return filter_format("(%s=%s)", [attribute, username])


def decode_entry(data: LDAPData) -> DirectoryEntry:
    """
    Convert a raw python-ldap result row into a :py:class:`DirectoryEntry`.
    Values that are not valid UTF-8 (photos, certificates) are dropped.
    """
    dn, attrs = data
    attributes: dict[str, list[str]] = {}
    for name, values in attrs.items():
        decoded = []
        for value in values:
            if isinstance(value, bytes):
                try:
                    decoded.append(value.decode("utf-8"))
                except UnicodeDecodeError:
                    continue
            else:
                decoded.append(value)
        attributes[name] = decoded
    return DirectoryEntry(dn=dn, attributes=attributes)


class DirectoryClient:
    """
    A connection to one LDAP directory.

    Use it as a context manager to make sure the connection is unbound::

        with DirectoryClient.from_config(config) as client:
            entries = client.search(config.dn, config.filter, 0, 30, ["uid"])

    Args:
        url: the LDAP URL of the server, e.g. ``ldaps://ldap.example.com:636``
        username: the DN to bind as
        password: the password for ``username``

    Keyword Args:
        timeout: network timeout in seconds
        tls_verify: ``"never"`` or ``"always"``
        tls_ca_certfile: path to a CA certificate bundle
        use_starttls: issue StartTLS after connecting
        follow_referrals: chase referrals returned by the server
        page_size: page size for paged searches

    """

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        *,
        timeout: float | None = None,
        tls_verify: str | None = None,
        tls_ca_certfile: str | None = None,
        use_starttls: bool | None = None,
        follow_referrals: bool | None = None,
        page_size: int | None = None,
    ) -> None:
        self.url = url
        self.username = username
        self.password = password
        self.timeout = float(timeout if timeout is not None else get_setting("TIMEOUT"))
        self.tls_verify = tls_verify or get_setting("TLS_VERIFY")
        self.tls_ca_certfile = tls_ca_certfile
        self.use_starttls = (
            use_starttls if use_starttls is not None else get_setting("USE_STARTTLS")
        )
        self.follow_referrals = (
            follow_referrals
            if follow_referrals is not None
            else get_setting("FOLLOW_REFERRALS")
        )
        self.page_size = int(page_size or get_setting("PAGE_SIZE"))
        self._connection: ldap.ldapobject.LDAPObject | None = None  # type: ignore[name-defined]
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: "DirectoryConfig", **kwargs: Any) -> "DirectoryClient":
        """
        Build a client from a :py:class:`~ldapsync.models.DirectoryConfig`.
        """
        return cls(config.url, config.username, config.password, **kwargs)

    def __enter__(self) -> "DirectoryClient":
        if not self.connected:
            self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        if self._connection is None:
            msg = f"Not connected to {self.url}"
            raise DirectoryUnavailable(msg)
        return self._connection

    def _connect(self, dn: str, password: str) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Open a new connection to our server and bind as ``dn``.

        Raises:
            ValueError: our ``tls_verify`` is not ``"never"`` or ``"always"``
            OSError: our CA certificate file does not exist
            ldap.LDAPError: the connection or bind failed

        Returns:
            A bound LDAPObject.

        """
        ldap_object = ldap.initialize(self.url)
        if self.follow_referrals:
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)  # type: ignore[attr-defined]
        else:
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, self.timeout)  # type: ignore[attr-defined]
        if self.tls_verify == "never":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
        elif self.tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
        else:
            msg = f"Invalid tls_verify value: {self.tls_verify}"
            raise ValueError(msg)
        if self.tls_ca_certfile:
            if not Path(self.tls_ca_certfile).is_file():
                msg = f"CA Certificate file does not exist: {self.tls_ca_certfile}"
                raise OSError(msg)
            ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, self.tls_ca_certfile)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
        if self.use_starttls:
            ldap_object.start_tls_s()
        ldap_object.simple_bind_s(dn, password)
        return ldap_object

    def connect(self) -> None:
        """
        Connect and bind as our service account.

        Raises:
            DirectoryUnavailable: the server could not be reached or refused
                our credentials

        """
        try:
            connection = self._connect(self.username, self.password)
        except ldap.INVALID_CREDENTIALS as e:  # type: ignore[attr-defined]
            logger.warning("ldapsync.directory.connect.invalid_credentials url=%s", self.url)
            msg = f"{self.url} rejected the bind DN or password"
            raise InvalidCredentials(msg) from e
        except (ldap.LDAPError, OSError) as e:  # type: ignore[attr-defined]
            logger.warning("ldapsync.directory.connect.failed url=%s error=%s", self.url, e)
            msg = f"Could not connect to {self.url}: {e}"
            raise DirectoryUnavailable(msg) from e
        with self._lock:
            self._connection = connection
        logger.debug("ldapsync.directory.connect.success url=%s", self.url)

    def disconnect(self) -> None:
        """
        Unbind our connection, if we have one.
        """
        with self._lock:
            connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.unbind_s()
            except ldap.LDAPError as e:  # type: ignore[attr-defined]
                logger.debug("ldapsync.directory.disconnect.failed url=%s error=%s", self.url, e)

    def _get_pctrls(self, serverctrls):
        return [
            c
            for c in serverctrls
            if c.controlType == SimplePagedResultsControl.controlType
        ]

    def _paged_search(
        self,
        basedn: str,
        searchfilter: str,
        attrlist: list[str] | None,
        sizelimit: int,
        cancel: threading.Event | None,
    ) -> list[LDAPData]:
        paging = SimplePagedResultsControl(True, size=self.page_size, cookie="")  # noqa: FBT003
        results: list[LDAPData] = []
        while True:
            if cancel is not None and cancel.is_set():
                msg = f"Search of {basedn} on {self.url} was cancelled"
                raise SyncCancelled(msg)
            msgid = self.connection.search_ext(
                basedn,
                ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
                searchfilter,
                attrlist,
                serverctrls=[paging],
            )
            _, rdata, _, serverctrls = self.connection.result3(msgid)
            for dn, attrs in rdata:
                # Skip the search references Active Directory appends
                if isinstance(attrs, dict):
                    results.append((dn, attrs))
            # The size limit is enforced here rather than by the server, which
            # would raise SIZELIMIT_EXCEEDED and discard the page
            if sizelimit and len(results) >= sizelimit:
                return results[:sizelimit]
            paged_controls = self._get_pctrls(serverctrls)
            if not paged_controls or not paged_controls[0].cookie:
                break
            paging.cookie = paged_controls[0].cookie
        return results

    def search(
        self,
        basedn: str,
        filterstr: str,
        sizelimit: int = 0,
        timelimit: int = 0,
        attributes: list[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> list[DirectoryEntry]:
        """
        Search the subtree under ``basedn``.

        Args:
            basedn: the base DN to search under
            filterstr: the LDAP search filter

        Keyword Args:
            sizelimit: the most entries to return; 0 means no limit
            timelimit: server-side time limit in seconds; 0 means no limit
            attributes: the attributes to return; ``None`` means all of them
            cancel: when set, stop before requesting the next page

        Raises:
            DirectoryUnavailable: the search failed
            SyncCancelled: ``cancel`` was set

        Returns:
            The matching entries.  No matches is an empty list.

        """
        connection = self.connection
        if timelimit:
            connection.set_option(ldap.OPT_TIMELIMIT, int(timelimit))  # type: ignore[attr-defined]
        try:
            data = self._paged_search(basedn, filterstr, attributes, sizelimit, cancel)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            logger.warning(
                "ldapsync.directory.search.failed url=%s basedn=%s filter=%s error=%s",
                self.url,
                basedn,
                filterstr,
                e,
            )
            msg = f"Searching {basedn} on {self.url} failed: {e}"
            raise DirectoryUnavailable(msg) from e
        return [decode_entry(row) for row in data]

    def login(
        self,
        basedn: str,
        user_filter: str,
        password: str,
        sizelimit: int = 0,
        timelimit: int = 0,
    ) -> None:
        """
        Check a user's password by finding their entry and binding as it.

        Args:
            basedn: the base DN to look for the user under
            user_filter: a filter that matches exactly the user's entry
            password: the password to bind with

        Keyword Args:
            sizelimit: passed through to :py:meth:`search`
            timelimit: passed through to :py:meth:`search`

        Raises:
            InvalidCredentials: no single entry matched ``user_filter``, or the
                bind was rejected
            DirectoryUnavailable: the directory could not be searched

        """
        if not password:
            # An empty password would be an anonymous bind, which succeeds
            msg = "A password is required"
            raise InvalidCredentials(msg)
        entries = self.search(basedn, user_filter, sizelimit, timelimit)
        if len(entries) != 1:
            logger.warning(
                "ldapsync.directory.login.no_such_user filter=%s matches=%d",
                user_filter,
                len(entries),
            )
            msg = "User does not exist or matches more than one entry"
            raise InvalidCredentials(msg)
        user_dn = entries[0].dn
        try:
            connection = self._connect(user_dn, password)
        except ldap.INVALID_CREDENTIALS as e:  # type: ignore[attr-defined]
            logger.warning("ldapsync.directory.login.invalid_credentials dn=%s", user_dn)
            msg = f"Invalid credentials for {user_dn}"
            raise InvalidCredentials(msg) from e
        except (ldap.LDAPError, OSError) as e:  # type: ignore[attr-defined]
            msg = f"Could not bind as {user_dn}: {e}"
            raise DirectoryUnavailable(msg) from e
        connection.unbind_s()
        logger.info("ldapsync.directory.login.success dn=%s", user_dn)
