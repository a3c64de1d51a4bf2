# -*- Mode:Python; indent-tabs-mode:nil; tab-width:4 -*-
#
# Copyright 2015-2024 Canonical Ltd.
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

"""File-related utilities."""

import hashlib
import logging
import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Any, Callable, Generator

logger = logging.getLogger(__name__)


def remove_path(path: Path) -> bool:
    """Remove a file, link or directory tree without following links.

    Directories in the tree that don't grant write access to their owner,
    such as read-only directories extracted from an image, are made writable
    so their contents can be removed.

    :param path: The path to remove.

    :return: Whether something was removed.
    """
    try:
        if path.is_dir() and not path.is_symlink():
            _remove_tree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return False

    logger.debug("removed %s", path)
    return True


def _remove_tree(path: Path) -> None:
    top = os.path.abspath(path)

    def _on_error(func: Callable[..., Any], target: str, error: BaseException) -> None:
        if isinstance(error, FileNotFoundError):
            return
        if not isinstance(error, PermissionError):
            raise error

        target = os.path.abspath(target)
        if target != top:
            _add_owner_permissions(os.path.dirname(target))

        if func in (os.unlink, os.remove, os.rmdir):
            func(target)
            return

        # the directory itself can't be read
        _add_owner_permissions(target)
        _rmtree(target, _on_error)

    _rmtree(top, _on_error)


def _rmtree(path: str, handler: Callable[[Callable[..., Any], str, BaseException], None]):
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=handler)  # pylint: disable=unexpected-keyword-arg
    else:
        shutil.rmtree(
            path, onerror=lambda func, target, exc_info: handler(func, target, exc_info[1])
        )


def _add_owner_permissions(path: str) -> None:
    mode = stat.S_IMODE(os.lstat(path).st_mode)
    if mode & stat.S_IRWXU != stat.S_IRWXU:
        os.chmod(path, mode | stat.S_IRWXU)


def calculate_hash(filename: Path, *, algorithm: str) -> str:
    """Calculate the hash of the given file.

    :param filename: The path to the file to digest.
    :param algorithm: The algorithm to use, as defined by ``hashlib``.

    :return: The file hash.

    :raise ValueError: If the algorithm is unsupported.
    """
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"unsupported algorithm {algorithm!r}")

    hasher = hashlib.new(algorithm)

    for block in _file_reader_iter(filename):
        hasher.update(block)
    return hasher.hexdigest()


def _file_reader_iter(
    path: Path, block_size: int = 2**20
) -> Generator[bytes, None, None]:
    """Read a file in blocks.

    :param path: The path to the file to read.
    :param block_size: The size of the block to read, default is 1MiB.
    """
    with path.open("rb") as file:
        block = file.read(block_size)
        while len(block) > 0:
            yield block
            block = file.read(block_size)
