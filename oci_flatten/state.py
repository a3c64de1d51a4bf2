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

"""State carried across the layers of a flattening run."""

import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, NamedTuple, Set

logger = logging.getLogger(__name__)


class DirectoryRecord(NamedTuple):
    """A directory whose attributes are applied once all layers are written."""

    path: Path
    member: tarfile.TarInfo


class LayerState:
    """Deletion and write tracking for a stack of layers.

    Layers are processed from the newest to the oldest. Whiteouts and written
    names recorded while a layer is processed only take effect on the layers
    processed after it, so that whiteouts hide entries of lower layers only.

    All names are root-relative paths as returned by ``paths.relative_name``.
    """

    def __init__(self) -> None:
        self.deleted: Set[PurePosixPath] = set()
        self.written: Dict[PurePosixPath, bool] = {}
        self.pending_deleted: Set[PurePosixPath] = set()
        self.pending_written: Dict[PurePosixPath, bool] = {}
        self.directories: List[DirectoryRecord] = []
        self.layer_count = 0

    def begin_layer(self) -> None:
        """Start recording a new layer."""
        self.pending_deleted = set()
        self.pending_written = {}

    def end_layer(self) -> None:
        """Make the current layer's whiteouts and names visible to lower layers."""
        self.deleted.update(self.pending_deleted)
        # A name written as a directory by a newer layer stays a directory.
        for name, is_dir in self.pending_written.items():
            self.written.setdefault(name, is_dir)
        self.layer_count += 1
        logger.debug(
            "layer %d: %d whiteouts, %d entries",
            self.layer_count,
            len(self.pending_deleted),
            len(self.pending_written),
        )
        self.pending_deleted = set()
        self.pending_written = {}

    def mark_deleted(self, name: PurePosixPath) -> None:
        """Record a whiteout for the given name."""
        self.pending_deleted.add(name)

    def mark_written(self, name: PurePosixPath, *, is_dir: bool) -> None:
        """Record an entry written by the current layer."""
        self.pending_written[name] = is_dir

    def add_directory(self, path: Path, member: tarfile.TarInfo) -> None:
        """Defer applying a directory's attributes to the end of the run."""
        self.directories.append(DirectoryRecord(path, member))

    def is_deleted(self, name: PurePosixPath) -> bool:
        """Verify if the name or any of its parents was whited out by a newer layer.

        :param name: The root-relative name to verify.

        :returns: Whether the name is hidden by a whiteout.
        """
        if name in self.deleted:
            return True

        return any(parent in self.deleted for parent in name.parents)

    def is_shadowed(self, name: PurePosixPath) -> bool:
        """Verify if a newer layer already provides the given name.

        A name is shadowed if a newer layer wrote it, or if a newer layer wrote
        one of its parents as something other than a directory.

        :param name: The root-relative name to verify.

        :returns: Whether the name is hidden by a newer layer.
        """
        if name in self.written:
            return True

        return any(
            self.written.get(parent) is False for parent in name.parents
        )
