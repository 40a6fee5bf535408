"""
Directory models served over LDAP, and DiffSync models used to report
what changed between two snapshots
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from diffsync import Adapter, DiffSyncModel


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryGroup:
    name: str
    gid: int


@dataclass(frozen=True)
class DirectoryUser:
    name: str
    uid: int
    primary_gid: int
    bcrypt_hash: str
    other_gids: Tuple[int, ...] = ()
    mail: Optional[str] = None


@dataclass(frozen=True)
class DirectorySnapshot:
    """
    An immutable projection of one auth portal document.
    Users keep source order, groups are ordered by gid.
    """

    users: Tuple[DirectoryUser, ...] = ()
    groups: Tuple[DirectoryGroup, ...] = ()
    revision: int = 0

    def group_names(self) -> Dict[int, str]:
        """Map of gid to group name."""
        return {group.gid: group.name for group in self.groups}

    def find_user(self, name: str) -> Optional[DirectoryUser]:
        for user in self.users:
            if user.name == name:
                return user
        return None

    def find_group(self, name: str) -> Optional[DirectoryGroup]:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def members_of(self, gid: int) -> List[DirectoryUser]:
        """Users whose primary or supplementary groups include `gid`."""
        return [u for u in self.users if u.primary_gid == gid or gid in u.other_gids]


class GroupEntry(DiffSyncModel):
    """DiffSync model representing a served group."""
    _modelname = "group"
    _identifiers = ("name",)
    _attributes = ("gid",)

    name: str
    gid: int


class UserEntry(DiffSyncModel):
    """
    DiffSync model representing a served user.
    A user is identified by its name, every other field is compared.
    """
    _modelname = "user"
    _identifiers = ("name",)
    _attributes = ("uid", "primary_gid", "other_gids", "mail", "bcrypt_hash")

    name: str
    uid: int
    primary_gid: int
    other_gids: List[int] = []
    mail: Optional[str] = None
    bcrypt_hash: str


class DirectoryAdapter(Adapter):
    """
    DiffSync adapter over a DirectorySnapshot.
    Only used for diffing; nothing is ever synced back into a snapshot.
    """

    group = GroupEntry
    user = UserEntry
    top_level = ["group", "user"]

    def __init__(self, snapshot: DirectorySnapshot, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.snapshot = snapshot

    def load(self):
        """Load the snapshot's groups and users into the diffsync store."""
        for group in self.snapshot.groups:
            self.add(GroupEntry(name=group.name, gid=group.gid))

        for user in self.snapshot.users:
            self.add(UserEntry(
                name=user.name,
                uid=user.uid,
                primary_gid=user.primary_gid,
                other_gids=list(user.other_gids),
                mail=user.mail,
                bcrypt_hash=user.bcrypt_hash
            ))


def diff_snapshots(old: Optional[DirectorySnapshot], new: DirectorySnapshot) -> Dict[str, int]:
    """
    Summarize the changes needed to turn `old` into `new`.
    Returns the diffsync summary (create/update/delete/no-change counts).
    """
    previous = DirectoryAdapter(old or DirectorySnapshot(), name="previous")
    previous.load()
    current = DirectoryAdapter(new, name="current")
    current.load()

    diff = previous.diff_from(current)
    summary = diff.summary()
    if diff.has_diffs() and logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Snapshot diff:\n{diff.str()}")
    return summary
