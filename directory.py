"""
LDAP directory tree rendered from the published snapshot, served with ldaptor

Layout below the base DN:
  ou=groups,<base>                      one cn=<group> entry per group
  <group_format>=<primary group>,<base> one <name_format>=<user> entry per user
"""

import logging
from typing import Dict, List, Optional, Tuple

import bcrypt
import ldap.dn
from ldaptor.inmemory import ReadOnlyInMemoryLDAPEntry
from ldaptor.interfaces import IConnectedLDAPEntry
from ldaptor.protocols.ldap import distinguishedname, ldaperrors
from ldaptor.protocols.ldap.ldapserver import LDAPServer
from twisted.internet import defer
from twisted.internet.protocol import ServerFactory

from config import Config
from models import DirectorySnapshot, DirectoryUser


logger = logging.getLogger(__name__)

GROUPS_OU = "groups"


def check_password(bcrypt_hash: str, password) -> bool:
    """Check `password` against a hex-encoded bcrypt hash as stored in a snapshot."""
    if isinstance(password, str):
        password = password.encode("utf-8")
    if not password:
        return False

    try:
        return bcrypt.checkpw(password, bytes.fromhex(bcrypt_hash))
    except ValueError as e:
        logger.warning(f"Stored password hash cannot be checked: {e}")
        return False


def rdn(attr: str, value: str) -> str:
    return f"{attr}={ldap.dn.escape_dn_chars(value)}"


def _encode(values) -> List[bytes]:
    return [str(v).encode("utf-8") for v in values]


class DirectoryEntry(ReadOnlyInMemoryLDAPEntry):
    """Read-only in-memory entry whose children are looked up by RDN."""

    def __init__(self, dn: str, attributes: Dict[bytes, List[bytes]]):
        super().__init__(dn=dn, attributes=attributes)
        self._parent = None
        self._children = {}

    def add_child(self, child: "DirectoryEntry") -> "DirectoryEntry":
        child._parent = self
        self._children[child.dn.split()[0].getText().lower()] = child
        return child

    def children(self, callback=None):
        if callback is None:
            return defer.succeed(list(self._children.values()))
        for child in self._children.values():
            callback(child)
        return defer.succeed(None)

    def lookup(self, dn):
        dn = distinguishedname.DistinguishedName(dn)
        if dn == self.dn:
            return defer.succeed(self)
        if not self.dn.contains(dn):
            return defer.fail(ldaperrors.LDAPNoSuchObject(dn.getText()))

        child_rdn = dn.split()[-len(self.dn.split()) - 1]
        child = self._children.get(child_rdn.getText().lower())
        if child is None:
            return defer.fail(ldaperrors.LDAPNoSuchObject(dn.getText()))
        return child.lookup(dn)


class UserLDAPEntry(DirectoryEntry):
    """User entry accepting simple binds checked against its bcrypt hash."""

    def __init__(self, dn: str, attributes: Dict[bytes, List[bytes]], bcrypt_hash: str):
        super().__init__(dn=dn, attributes=attributes)
        self.bcrypt_hash = bcrypt_hash

    def bind(self, password):
        return defer.maybeDeferred(self._bind_bcrypt, password)

    def _bind_bcrypt(self, password):
        if check_password(self.bcrypt_hash, password):
            logger.debug(f"Bind succeeded for {self.dn.getText()}")
            return self
        logger.info(f"Bind failed for {self.dn.getText()}")
        raise ldaperrors.LDAPInvalidCredentials()


def group_dn(config: Config, name: str) -> str:
    return f"{rdn('cn', name)},{rdn('ou', GROUPS_OU)},{config.base_dn}"


def user_dn(config: Config, user: DirectoryUser, primary_group: str) -> str:
    return f"{rdn(config.name_format, user.name)},{rdn(config.group_format, primary_group)},{config.base_dn}"


def build_tree(snapshot: DirectorySnapshot, config: Config) -> DirectoryEntry:
    """Render a snapshot into an ldaptor entry tree rooted at the base DN."""
    attr, value, _ = ldap.dn.str2dn(config.base_dn)[0][0]
    root = DirectoryEntry(
        dn=config.base_dn,
        attributes={
            b"objectClass": [b"top", b"domain"],
            attr.encode("utf-8"): [value.encode("utf-8")]
        }
    )

    names = snapshot.group_names()

    ou_groups = root.add_child(DirectoryEntry(
        dn=f"{rdn('ou', GROUPS_OU)},{config.base_dn}",
        attributes={
            b"objectClass": [b"top", b"organizationalUnit"],
            b"ou": [GROUPS_OU.encode("utf-8")]
        }
    ))

    for group in snapshot.groups:
        attributes = {
            b"objectClass": [b"top", b"posixGroup"],
            b"cn": _encode([group.name]),
            b"gidNumber": _encode([group.gid]),
        }
        members = [u.name for u in snapshot.members_of(group.gid)]
        if members:
            attributes[b"memberUid"] = _encode(members)
        ou_groups.add_child(DirectoryEntry(dn=group_dn(config, group.name), attributes=attributes))

    containers: Dict[int, DirectoryEntry] = {}
    for user in snapshot.users:
        primary = names[user.primary_gid]
        container = containers.get(user.primary_gid)
        if container is None:
            container = root.add_child(DirectoryEntry(
                dn=f"{rdn(config.group_format, primary)},{config.base_dn}",
                attributes={
                    b"objectClass": [b"top", b"organizationalUnit"],
                    config.group_format.encode("utf-8"): _encode([primary])
                }
            ))
            containers[user.primary_gid] = container

        attributes = {
            b"objectClass": [b"top", b"posixAccount", b"inetOrgPerson"],
            b"cn": _encode([user.name]),
            b"uid": _encode([user.name]),
            b"sn": _encode([user.name]),
            b"uidNumber": _encode([user.uid]),
            b"gidNumber": _encode([user.primary_gid]),
            # a role named like the primary group repeats its gid
            b"memberOf": _encode(
                group_dn(config, names[gid]) for gid in dict.fromkeys((user.primary_gid,) + user.other_gids)
            ),
        }
        if user.mail:
            attributes[b"mail"] = _encode([user.mail])

        container.add_child(UserLDAPEntry(
            dn=user_dn(config, user, primary),
            attributes=attributes,
            bcrypt_hash=user.bcrypt_hash
        ))

    return root


class DirectoryFactory(ServerFactory):
    """
    Protocol factory serving the publisher's current snapshot.

    ldaptor adapts the factory to IConnectedLDAPEntry once per request, so each
    request reads the publisher exactly once and works on that snapshot's tree.
    Trees are rendered once per snapshot and shared by all connections.
    """

    protocol = LDAPServer

    def __init__(self, config: Config):
        self.config = config
        self._rendered: Optional[Tuple[DirectorySnapshot, DirectoryEntry]] = None

    def root(self) -> DirectoryEntry:
        snapshot = self.config.current()
        rendered = self._rendered
        if rendered is None or rendered[0] is not snapshot:
            rendered = (snapshot, build_tree(snapshot, self.config))
            self._rendered = rendered
            logger.debug(f"Rendered directory tree for config revision {snapshot.revision}")
        return rendered[1]

    def buildProtocol(self, addr):
        proto = self.protocol()
        proto.factory = self
        logger.debug(f"New LDAP connection from {addr}")
        return proto

    def __conform__(self, interface):
        if interface is IConnectedLDAPEntry:
            return self.root()
        return None
