"""
Directory Client

Thin wrapper around an ldap3 connection that performs the protocol-level
operations the LDAP provider needs: connecting, binding, searching,
reading and modifying entries, and building safe filter strings.

This module knows nothing about wiki users. Results are normalized into
plain dictionaries mapping attribute names to lists of strings, with the
entry DN stored under the reserved ``"dn"`` key.

Thread Safety
-------------
- One long-lived connection per client, reused for the process lifetime
- Every operation on that connection is serialized with an RLock
- Credential checks (`bind_as`) use a throw-away connection so the service
  binding is never replaced by a user binding
"""

from __future__ import annotations

import logging
import ssl
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ldap3 import (
    ALL_ATTRIBUTES,
    ANONYMOUS,
    BASE,
    MODIFY_REPLACE,
    NO_ATTRIBUTES,
    NONE,
    SIMPLE,
    SUBTREE,
    SYNC,
    Connection,
    Server,
    Tls,
)
from ldap3.core.exceptions import LDAPException

from ..core.errors import (
    DirectoryBindError,
    DirectoryConnectionError,
    DirectoryError,
)
from ..domains import LDAPConnectionConfig

logger = logging.getLogger("fedauth.directory")

DN_KEY = "dn"

RESULT_NO_SUCH_OBJECT = 32

# RFC 2254 section 4
_FILTER_ESCAPES = str.maketrans({
    "\\": "\\5c",
    "(": "\\28",
    ")": "\\29",
    "*": "\\2a",
    "\x00": "\\00",
})

FilterMap = Mapping[Union[str, int], Optional[str]]
Entry = Dict[str, List[str]]


# ---------------------------------------------------------------------
# Filter helpers
# ---------------------------------------------------------------------

def escape(value: str) -> str:
    """
    Escape a value for interpolation into a search filter.

    The characters ``\\ ( ) *`` and NUL are replaced by their ``\\xx`` hex
    forms, so the result always matches literally.
    """
    return value.translate(_FILTER_ESCAPES)


def format_filter(filters: Optional[FilterMap]) -> str:
    """
    Build a filter string from a filter map.

    - string keys become escaped equality terms ``(key=value)``
    - an empty or None value becomes ``(!(key=*))`` (attribute must be absent)
    - integer keys hold raw filter fragments, used verbatim

    Several terms are AND-ed together. No filters matches every object.
    """
    if not filters:
        return "(objectClass=*)"

    parts: List[str] = []
    for key, value in filters.items():
        if isinstance(key, int):
            fragment = (value or "").strip()
            if not fragment:
                continue
            if not fragment.startswith("("):
                fragment = f"({fragment})"
            parts.append(fragment)
        elif value:
            parts.append(f"({key}={escape(value)})")
        else:
            parts.append(f"(!({key}=*))")

    if not parts:
        return "(objectClass=*)"
    if len(parts) == 1:
        return parts[0]
    return "(&" + "".join(parts) + ")"


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def normalize_entry(raw: Mapping[str, Any]) -> Entry:
    """
    Turn an ldap3 response item into ``{attribute: [str, ...], "dn": [dn]}``.

    Attributes without values are dropped.
    """
    entry: Entry = {}
    attributes = raw.get("raw_attributes") or raw.get("attributes") or {}
    for name, values in attributes.items():
        if values is None:
            continue
        if isinstance(values, (list, tuple)):
            decoded = [_decode(v) for v in values]
        else:
            decoded = [_decode(values)]
        if decoded:
            entry[name] = decoded
    entry[DN_KEY] = [raw.get("dn", "")]
    return entry


def entry_dn(entry: Mapping[str, List[str]]) -> Optional[str]:
    values = entry.get(DN_KEY)
    return values[0] if values else None


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------

class DirectoryClient:
    """
    Lazily connected LDAPv3 client for one domain.

    Parameters
    ----------
    config : LDAPConnectionConfig
        Connection settings of the domain.
    server : Optional[Server]
        Pre-built ldap3 server object (mainly for tests).
    client_strategy : str
        ldap3 client strategy, SYNC by default.
    """

    def __init__(
        self,
        config: LDAPConnectionConfig,
        *,
        server: Optional[Server] = None,
        client_strategy: str = SYNC,
    ) -> None:
        self.config = config
        self._server = server
        self._strategy = client_strategy
        self._conn: Optional[Connection] = None
        self._bound = False
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def base_dn(self) -> Optional[str]:
        return self.config.base_dn

    @property
    def uri(self) -> str:
        if self.config.uri:
            return self.config.uri
        proto = "ldaps" if self.config.tls else self.config.proto
        host = self.config.host
        if self.config.port:
            host = f"{host}:{self.config.port}"
        return f"{proto}://{host}"

    def _build_tls(self) -> Optional[Tls]:
        cfg = self.config
        if not (cfg.tls or cfg.starttls or cfg.ca_file or cfg.ca_dir or cfg.cert_file):
            return None
        return Tls(
            validate=ssl.CERT_REQUIRED,
            ca_certs_file=cfg.ca_file,
            ca_certs_path=cfg.ca_dir,
            local_certificate_file=cfg.cert_file,
            local_private_key_file=cfg.key_file,
        )

    def _get_server(self) -> Server:
        if self._server is None:
            self._server = Server(
                self.uri,
                tls=self._build_tls(),
                get_info=NONE,
                connect_timeout=self.config.timeout,
            )
        return self._server

    def _new_connection(self, user: Optional[str] = None, password: Optional[str] = None) -> Connection:
        conn = Connection(
            self._get_server(),
            user=user,
            password=password,
            version=self.config.version,
            auto_referrals=self.config.referrals,
            client_strategy=self._strategy,
            receive_timeout=self.config.timeout,
            raise_exceptions=False,
        )
        try:
            conn.open(read_server_info=False)
            if self.config.starttls and not conn.start_tls(read_server_info=False):
                raise DirectoryConnectionError(f"StartTLS failed on {self.uri}")
        except LDAPException as exc:
            raise DirectoryConnectionError(f"Could not connect to {self.uri}: {exc}") from exc
        return conn

    def connect(self) -> Connection:
        """
        Open the shared connection if it is not open yet.

        Raises
        ------
        DirectoryConnectionError
            If the server cannot be reached.
        """
        with self._lock:
            if self._conn is None:
                self._conn = self._new_connection()
                self._bound = False
                logger.debug("Connected to %s", self.uri)
            return self._conn

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind(self) -> bool:
        """
        Bind the shared connection with the service identity.

        Binds anonymously when no bind DN or password is configured.
        Returns False when the server rejects the credentials.

        Raises
        ------
        DirectoryConnectionError
            On transport failure.
        """
        bind_dn = self.config.bind_dn
        bind_pass = self.config.bind_pass.get_secret_value() if self.config.bind_pass else None
        if not bind_dn or not bind_pass:
            bind_dn, bind_pass = None, None

        with self._lock:
            conn = self.connect()
            # the shared connection is opened without a user, which fixes
            # ANONYMOUS until the mechanism is set explicitly
            conn.authentication = SIMPLE if bind_dn else ANONYMOUS
            conn.user = bind_dn
            conn.password = bind_pass
            try:
                bound = conn.bind()
            except LDAPException as exc:
                self._conn = None
                self._bound = False
                raise DirectoryConnectionError(f"Bind to {self.uri} failed: {exc}") from exc
            # keep an existing binding when a rebind fails
            if bound:
                self._bound = True
            else:
                logger.warning(
                    "Service bind to %s as %s rejected: %s",
                    self.uri,
                    bind_dn or "<anonymous>",
                    conn.result.get("description") if conn.result else "unknown",
                )
            return bound

    def bind_as(self, dn: str, password: str) -> bool:
        """
        Check a user credential with a simple bind.

        Uses a separate connection, so the service binding of the shared
        connection is retained. Empty passwords are always rejected since
        they would turn into an unauthenticated bind.

        Raises
        ------
        DirectoryConnectionError
            On transport failure only.
        """
        if not dn or not password:
            return False

        conn = self._new_connection(user=dn, password=password)
        try:
            return bool(conn.bind())
        except LDAPException as exc:
            raise DirectoryConnectionError(f"Bind to {self.uri} failed: {exc}") from exc
        finally:
            try:
                conn.unbind()
            except LDAPException:
                logger.debug("Ignoring unbind failure on credential check connection")

    def unbind(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.unbind()
                finally:
                    self._conn = None
                    self._bound = False

    @property
    def is_bound(self) -> bool:
        return self._bound

    def ensure_bound(self) -> None:
        """
        Bind with the service identity unless already bound.

        Raises
        ------
        DirectoryBindError
            If the service identity cannot bind.
        """
        with self._lock:
            if self._bound:
                return
            if not self.bind():
                raise DirectoryBindError(f"Could not bind to {self.uri}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _attribute_list(attributes: Optional[Iterable[str]]) -> Union[str, List[str]]:
        if attributes is None:
            return ALL_ATTRIBUTES
        wanted = [a for a in attributes if a.lower() != DN_KEY]
        return wanted or NO_ATTRIBUTES

    def _query(
        self,
        base: str,
        scope: str,
        attributes: Optional[Iterable[str]],
        filters: Optional[FilterMap],
    ) -> List[Entry]:
        filter_string = format_filter(filters)
        with self._lock:
            self.ensure_bound()
            conn = self._conn
            try:
                ok = conn.search(
                    search_base=base,
                    search_filter=filter_string,
                    search_scope=scope,
                    attributes=self._attribute_list(attributes),
                )
            except LDAPException as exc:
                self._conn = None
                self._bound = False
                raise DirectoryError(
                    f"Directory query failed (base: {base}, filter: {filter_string}): {exc}"
                ) from exc

            result = conn.result or {}
            if not ok and result.get("result") not in (0, None):
                if result.get("result") == RESULT_NO_SUCH_OBJECT:
                    return []
                raise DirectoryError(
                    f"Directory query failed (base: {base}, filter: {filter_string}): "
                    f"{result.get('description')} {result.get('message', '')}".rstrip()
                )

            return [
                normalize_entry(item)
                for item in (conn.response or [])
                if item.get("type") == "searchResEntry"
            ]

    def search(
        self,
        attributes: Optional[Iterable[str]],
        filters: Optional[FilterMap] = None,
        base_dn: Optional[str] = None,
    ) -> List[Entry]:
        """
        Search the subtree below `base_dn` (or the configured base DN).

        Returns
        -------
        List[Entry]
            Normalized entries. Empty when nothing matches or the base does
            not exist.

        Raises
        ------
        DirectoryBindError
            If the service identity cannot bind.
        DirectoryError
            If the query fails for any other reason.
        """
        base = base_dn or self.base_dn or ""
        return self._query(base, SUBTREE, attributes, filters)

    def read(
        self,
        dn: str,
        attributes: Optional[Iterable[str]] = None,
        filters: Optional[FilterMap] = None,
    ) -> Optional[Entry]:
        """
        Read a single entry by DN, or None if it does not exist or does
        not satisfy `filters`.
        """
        entries = self._query(dn, BASE, attributes, filters)
        return entries[0] if entries else None

    def modify(self, dn: str, changes: Mapping[str, Optional[List[str]]]) -> None:
        """
        Replace attribute values on an entry.

        A None or empty list removes all values of that attribute.

        Raises
        ------
        DirectoryError
            If the server rejects the modification.
        """
        payload = {
            attr: [(MODIFY_REPLACE, list(values or []))]
            for attr, values in changes.items()
        }
        with self._lock:
            self.ensure_bound()
            try:
                ok = self._conn.modify(dn, payload)
            except LDAPException as exc:
                self._conn = None
                self._bound = False
                raise DirectoryError(f"Modify of {dn} failed: {exc}") from exc
            if not ok:
                result = self._conn.result or {}
                raise DirectoryError(
                    f"Modify of {dn} failed: {result.get('description')} {result.get('message', '')}".rstrip()
                )
