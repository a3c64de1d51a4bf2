# -*- Mode:Python; indent-tabs-mode:nil; tab-width:4 -*-
#
# Copyright 2021-2024 Canonical Ltd.
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

"""OCI whiteout helpers.

Relevant OCI documentation available at:
https://github.com/opencontainers/image-spec/blob/main/layer.md#whiteouts
"""

from pathlib import PurePath
from typing import TypeVar

WHITEOUT_PREFIX = ".wh."
OPAQUE_MARKER = ".wh..wh..opq"

_P = TypeVar("_P", bound=PurePath)


def is_whiteout(path: PurePath) -> bool:
    """Verify if the given path corresponds to an OCI whiteout file.

    :param path: The path of the entry to verify.

    :returns: Whether the given path is an OCI whiteout file.
    """
    return path.name.startswith(WHITEOUT_PREFIX) and path.name != OPAQUE_MARKER


def is_opaque_marker(path: PurePath) -> bool:
    """Verify if the given path is an OCI opaque directory marker."""
    return path.name == OPAQUE_MARKER


def whiteout_for(path: _P) -> _P:
    """Convert the given path to an OCI whiteout file name.

    :param path: The file path to white out.

    :returns: The corresponding OCI whiteout file name.
    """
    return path.parent / (WHITEOUT_PREFIX + path.name)


def whited_out(whiteout_file: _P) -> _P:
    """Find the whited out file corresponding to a whiteout file.

    :param whiteout_file: The whiteout file to process.

    :returns: The file that was whited out.

    :raises ValueError: If the path is not a whiteout file or doesn't name a
        file in its directory.
    """
    if not is_whiteout(whiteout_file):
        raise ValueError("argument is not an OCI whiteout file")

    name = whiteout_file.name[len(WHITEOUT_PREFIX) :]
    if not name:
        raise ValueError("whiteout file does not name a target")
    if name in (".", ".."):
        raise ValueError("whiteout file names a directory reference")

    return whiteout_file.parent / name
