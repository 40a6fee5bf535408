"""
Projection of an auth portal document into the served directory

Allocation rules:
- every user gets the default group "user" (gid 1000) as primary group
- the user at source index i gets uid 1000 + i, skipped users included
- roles become supplementary groups; the first time a role name is seen in
  the document it takes the next free gid starting at 1001. Role names differing
  only in case share that gid and are served under the first spelling seen
- user names differing only in case are duplicates
"""

import logging
from typing import Dict, List

from errors import ConfigMalformed, UnsupportedCredential
from loader import SourceDocument, load
from models import DirectoryGroup, DirectorySnapshot, DirectoryUser


logger = logging.getLogger(__name__)

DEFAULT_GROUP = "user"
DEFAULT_GID = 1000
FIRST_UID = 1000
FIRST_ROLE_GID = 1001
SUPPORTED_ALGORITHM = "bcrypt"


def project(document: SourceDocument) -> DirectorySnapshot:
    """
    Build a DirectorySnapshot from a parsed document.
    Fails as a whole (no partial snapshot) with UnsupportedCredential or ConfigMalformed.
    """
    # LDAP names compare case-insensitively; the first spelling seen is served
    gids: Dict[str, int] = {DEFAULT_GROUP.lower(): DEFAULT_GID}
    group_names: Dict[int, str] = {DEFAULT_GID: DEFAULT_GROUP}
    next_gid = FIRST_ROLE_GID
    users: List[DirectoryUser] = []
    seen_names = set()

    for index, source_user in enumerate(document.users):
        if not source_user.passwords:
            logger.debug(f"Skipping user '{source_user.username}' - no passwords")
            continue

        password = source_user.passwords[0]
        if password.algorithm != SUPPORTED_ALGORITHM:
            raise UnsupportedCredential(
                f"invalid password type {password.algorithm} for user {source_user.username}"
            )
        if not password.hash:
            raise UnsupportedCredential(f"empty password hash for user {source_user.username}")

        if source_user.username.lower() in seen_names:
            raise ConfigMalformed(f"duplicate user name {source_user.username}")
        seen_names.add(source_user.username.lower())

        other_gids: List[int] = []
        for role in source_user.roles:
            gid = gids.get(role.name.lower())
            if gid is None:
                gid = next_gid
                gids[role.name.lower()] = gid
                group_names[gid] = role.name
                next_gid += 1
            if gid not in other_gids:
                other_gids.append(gid)

        mail = source_user.email_addresses[0].address if source_user.email_addresses else None

        users.append(DirectoryUser(
            name=source_user.username,
            uid=FIRST_UID + index,
            primary_gid=DEFAULT_GID,
            bcrypt_hash=password.hash.encode("utf-8").hex(),
            other_gids=tuple(other_gids),
            mail=mail
        ))

    snapshot = DirectorySnapshot(
        users=tuple(users),
        groups=tuple(DirectoryGroup(name=name, gid=gid)
                     for gid, name in sorted(group_names.items())),
        revision=document.revision
    )

    if logger.isEnabledFor(logging.DEBUG):
        names = snapshot.group_names()
        for user in snapshot.users:
            logger.debug(f"{user.name} {[names[gid] for gid in user.other_gids]}")

    return snapshot


def load_snapshot(path: str) -> DirectorySnapshot:
    """Load the auth portal config at `path` and project it."""
    return project(load(path))
