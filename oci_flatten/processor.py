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

"""Apply a single layer archive to the destination directory."""

import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import IO, Optional

from oci_flatten import errors, paths, whiteouts
from oci_flatten.extract import EntryAction, EntryExtractor, entry_action
from oci_flatten.options import OverwritePolicy
from oci_flatten.state import LayerState
from oci_flatten.utils import file_utils

logger = logging.getLogger(__name__)


class LayerProcessor:
    """Extract layer archives on top of each other, newest layer first.

    :param root: The destination directory.
    :param extractor: The entry extractor used to write entries to disk.
    :param policy: How entries present in more than one layer are resolved.
    """

    def __init__(
        self,
        root: Path,
        extractor: EntryExtractor,
        *,
        policy: OverwritePolicy = OverwritePolicy.NEWEST_WINS,
    ):
        self._root = root
        self._extractor = extractor
        self._policy = policy

    def process_layer(
        self, stream: IO[bytes], state: LayerState, *, digest: str = "<unknown>"
    ) -> None:
        """Extract all entries of a layer archive.

        The stream is read forward only, until the end of the archive.

        :param stream: The layer archive, optionally compressed.
        :param state: The state shared by all layers of the image.
        :param digest: The layer digest, used in error messages.

        :raises LayerReadError: If the stream is not a valid tar archive.
        :raises PathTraversalError: If an entry resolves outside the root.
        :raises ExtractionError: If writing an entry failed.
        :raises UnsupportedEntryType: If an entry type can't be handled.
        """
        try:
            with tarfile.open(fileobj=stream, mode="r|*") as tar:
                for member in tar:
                    self._process_entry(tar, member, state)
        except (tarfile.TarError, EOFError) as err:
            raise errors.LayerReadError(digest, str(err)) from err

    def _process_entry(
        self, tar: tarfile.TarFile, member: tarfile.TarInfo, state: LayerState
    ) -> None:
        path = paths.normalize(member.name, self._root)
        if path == self._root:
            logger.debug("skip root entry %r", member.name)
            return

        name = paths.relative_name(member.name)

        if whiteouts.is_opaque_marker(name):
            logger.warning(
                "Opaque directory marker %r is not supported, ignored.", member.name
            )
            return

        if whiteouts.is_whiteout(name):
            self._apply_whiteout(member, name, state)
            return

        if state.is_deleted(name):
            logger.debug("skip whited out entry %s", name)
            return

        if self._policy == OverwritePolicy.NEWEST_WINS and state.is_shadowed(name):
            logger.debug("skip %s, provided by a newer layer", name)
            return

        action = entry_action(member)
        if not self._prepare_path(path, name, action, state):
            return

        # Skipped entries are recorded too, so a link in a newer layer hides
        # files from lower layers at the same path.
        state.mark_written(name, is_dir=action == EntryAction.DIRECTORY)

        fileobj: Optional[IO[bytes]] = None
        if action == EntryAction.FILE:
            fileobj = tar.extractfile(member)

        self._extractor.extract(member, fileobj, path)

        if action == EntryAction.DIRECTORY:
            state.add_directory(path, member)

    def _apply_whiteout(
        self, member: tarfile.TarInfo, name: PurePosixPath, state: LayerState
    ) -> None:
        target_name = name.name[len(whiteouts.WHITEOUT_PREFIX) :]
        if target_name in (".", ".."):
            # A whiteout for the parent directory or its parent.
            raise errors.PathTraversalError(member.name, str(self._root))

        try:
            target = whiteouts.whited_out(name)
        except ValueError:
            logger.warning("Whiteout %r does not name a file, ignored.", str(name))
            return

        path = paths.normalize(str(target), self._root)
        if path == self._root:
            raise errors.PathTraversalError(member.name, str(self._root))

        state.mark_deleted(target)

        if self._policy == OverwritePolicy.NEWEST_WINS:
            # Everything on disk was written by a newer layer or by this one,
            # and whiteouts only hide files from lower layers.
            if path.exists() or path.is_symlink():
                logger.debug("keep %s, written by a newer layer", target)
            return

        try:
            if file_utils.remove_path(path):
                logger.debug("whiteout removed %s", target)
        except OSError as err:
            logger.warning("Failed to remove whited out path %s: %s", path, err)

    def _prepare_path(
        self,
        path: Path,
        name: PurePosixPath,
        action: EntryAction,
        state: LayerState,
    ) -> bool:
        """Make room for an entry, replacing what exists at its path.

        Directories are merged with existing directories, anything else
        replaces the existing entry.

        :returns: Whether the entry should be extracted.
        """
        if not (path.exists() or path.is_symlink()):
            return True

        if path.is_dir() and not path.is_symlink() and action == EntryAction.DIRECTORY:
            return True

        if (
            self._policy == OverwritePolicy.NEWEST_WINS
            and name not in state.pending_written
        ):
            # Created as a parent of an entry from a newer layer.
            logger.debug("skip %s, provided by a newer layer", name)
            return False

        try:
            file_utils.remove_path(path)
        except OSError as err:
            raise errors.ExtractionError(str(path), err.strerror or str(err)) from err

        return True
