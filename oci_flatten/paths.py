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

"""Map archive entry names to paths under the destination directory.

Layers built on Windows hosts by older tools may use backslash separators in
entry names. Names are split on whichever separator they use and rebuilt with
the host separator, and the result is checked to be contained in the
destination directory.
"""

import os
from pathlib import Path, PurePosixPath
from typing import List, Union

from oci_flatten import errors


def _components(name: str) -> List[str]:
    separator = "\\" if "\\" in name else "/"
    parts: List[str] = []

    for component in name.split(separator):
        if component in ("", "."):
            continue
        if component == "..":
            if not parts:
                return [".."]
            parts.pop()
            continue
        parts.append(component)

    return parts


def relative_name(name: str) -> PurePosixPath:
    """Obtain the canonical root-relative form of an archive entry name.

    :param name: The archive entry name.

    :returns: The name relative to the archive root, using forward slashes.
        The archive root itself is returned as ``PurePosixPath(".")``.

    :raises ValueError: If the name resolves above the archive root.
    """
    parts = _components(name)
    if parts == [".."]:
        raise ValueError(f"{name!r} resolves outside the archive root")

    return PurePosixPath(*parts)


def normalize(name: str, root: Union[Path, str]) -> Path:
    """Convert an archive entry name to a path under the destination directory.

    :param name: The archive entry name.
    :param root: The destination directory.

    :returns: The path the entry should be written to. Entries naming the
        archive root map to ``root`` itself.

    :raises PathTraversalError: If the entry would resolve outside ``root``.
    """
    root = Path(root)
    try:
        relpath = relative_name(name)
    except ValueError as err:
        raise errors.PathTraversalError(name, str(root)) from err

    path = root.joinpath(*relpath.parts)

    # The rebuilt path can't escape, but a component such as a drive
    # letter would make the join discard the root.
    root_str = os.path.abspath(root)
    path_str = os.path.abspath(path)
    if os.path.commonpath([root_str, path_str]) != root_str:
        raise errors.PathTraversalError(name, str(root))

    return path
