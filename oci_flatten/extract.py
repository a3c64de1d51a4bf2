# -*- Mode:Python; indent-tabs-mode:nil; tab-width:4 -*-
#
# Copyright 2024 Canonical Ltd.
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU Lesser General Public
# License version 3 as published by the Free Software Foundation.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""Write individual archive entries to disk.

Only directories and regular files are written. Links and special files are
never created: link targets can point outside the destination directory and
device nodes from untrusted layers must not reach the host.
"""

import enum
import logging
import os
import shutil
import tarfile
from pathlib import Path
from typing import IO, Optional, Tuple

from oci_flatten import errors
from oci_flatten.utils import os_utils

logger = logging.getLogger(__name__)


class EntryAction(enum.Enum):
    """What to do with an archive entry."""

    DIRECTORY = "directory"
    FILE = "file"
    SKIP = "skip"


_ENTRY_ACTIONS = {
    tarfile.DIRTYPE: EntryAction.DIRECTORY,
    tarfile.REGTYPE: EntryAction.FILE,
    tarfile.AREGTYPE: EntryAction.FILE,
    tarfile.CONTTYPE: EntryAction.FILE,
    tarfile.GNUTYPE_SPARSE: EntryAction.FILE,
    tarfile.LNKTYPE: EntryAction.SKIP,
    tarfile.SYMTYPE: EntryAction.SKIP,
    tarfile.CHRTYPE: EntryAction.SKIP,
    tarfile.BLKTYPE: EntryAction.SKIP,
    tarfile.FIFOTYPE: EntryAction.SKIP,
}


def entry_action(member: tarfile.TarInfo) -> EntryAction:
    """Determine how an archive entry is handled.

    :param member: The archive entry.

    :returns: The action for the entry type.

    :raises UnsupportedEntryType: If the entry type is not known.
    """
    action = _ENTRY_ACTIONS.get(member.type)
    if action is None:
        raise errors.UnsupportedEntryType(
            member.type.decode(errors="backslashreplace"), member.name
        )

    return action


def normalize_mode(mode: int) -> int:
    """Compute the permission bits for an extracted entry.

    The owner permissions are copied to group and others. If the entry
    already grants any permission to group or others, the image author set
    them on purpose and the original mode is kept.

    :param mode: The mode stored in the archive.

    :returns: The mode to set on disk.
    """
    if mode & 0o077:
        return mode & 0o7777

    user = mode & 0o700
    return user | user >> 3 | user >> 6


def entry_times(member: tarfile.TarInfo) -> Tuple[float, float]:
    """Obtain the access and modification times of an archive entry.

    The access time comes from the pax ``atime`` header when present and is
    never earlier than the modification time.

    :param member: The archive entry.

    :returns: A tuple containing the access and modification times.
    """
    mtime = float(member.mtime)
    atime = mtime

    pax_atime = member.pax_headers.get("atime")
    if pax_atime:
        try:
            atime = float(pax_atime)
        except ValueError:
            logger.debug("ignoring invalid atime %r in %s", pax_atime, member.name)

    return max(atime, mtime), mtime


class EntryExtractor:
    """Materialize archive entries.

    :param restore_ownership: Whether numeric owner and group are restored.
        If not specified, ownership is restored only when the process is
        allowed to change file owners.
    :param restore_timestamps: Whether access and modification times are
        restored.
    """

    def __init__(
        self,
        *,
        restore_ownership: Optional[bool] = None,
        restore_timestamps: bool = True,
    ):
        if restore_ownership is None:
            restore_ownership = os_utils.can_restore_ownership()

        self._restore_ownership = restore_ownership
        self._restore_timestamps = restore_timestamps
        logger.debug(
            "restore ownership: %s, restore timestamps: %s",
            restore_ownership,
            restore_timestamps,
        )

    @property
    def restores_ownership(self) -> bool:
        """Whether numeric owner and group are restored."""
        return self._restore_ownership

    def extract(
        self, member: tarfile.TarInfo, fileobj: Optional[IO[bytes]], path: Path
    ) -> EntryAction:
        """Write an archive entry to the given path.

        Directory attributes are not applied here, call ``finish_directory``
        once nothing else will be written beneath the directory.

        :param member: The archive entry.
        :param fileobj: The entry data stream, for regular files.
        :param path: The destination path of the entry.

        :returns: The action taken for the entry.

        :raises ExtractionError: If writing to disk failed.
        """
        action = entry_action(member)

        if action == EntryAction.SKIP:
            logger.debug("skip %s entry %s", _type_name(member), member.name)
            return action

        try:
            if action == EntryAction.DIRECTORY:
                path.mkdir(parents=True, exist_ok=True)
                return action

            path.parent.mkdir(parents=True, exist_ok=True)
            self._write_file(member, fileobj, path)
            self._apply_attributes(member, path)
        except OSError as err:
            raise errors.ExtractionError(str(path), _os_message(err)) from err

        return action

    def finish_directory(self, member: tarfile.TarInfo, path: Path) -> None:
        """Apply a directory entry's mode, ownership and times.

        :param member: The directory archive entry.
        :param path: The directory on disk.

        :raises ExtractionError: If the attributes can't be set.
        """
        try:
            self._apply_attributes(member, path)
        except OSError as err:
            raise errors.ExtractionError(str(path), _os_message(err)) from err

    @staticmethod
    def _write_file(
        member: tarfile.TarInfo, fileobj: Optional[IO[bytes]], path: Path
    ) -> None:
        with open(path, "wb") as file:
            if fileobj is not None:
                shutil.copyfileobj(fileobj, file)
        logger.debug("wrote %s (%d bytes)", path, member.size)

    def _apply_attributes(self, member: tarfile.TarInfo, path: Path) -> None:
        # chown clears the setuid and setgid bits, set the mode afterwards
        if self._restore_ownership:
            os.chown(path, member.uid, member.gid, follow_symlinks=False)

        os.chmod(path, normalize_mode(member.mode))

        # must be done after everything else
        if self._restore_timestamps:
            os.utime(path, entry_times(member), follow_symlinks=False)


def _type_name(member: tarfile.TarInfo) -> str:
    if member.islnk():
        return "hard link"
    if member.issym():
        return "symbolic link"
    if member.ischr():
        return "character device"
    if member.isblk():
        return "block device"
    if member.isfifo():
        return "fifo"
    return "unknown"


def _os_message(err: OSError) -> str:
    return err.strerror or str(err)
