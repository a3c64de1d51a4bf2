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

"""Image layer sources.

A layer provides its content digest and a fresh, forward-only stream
containing its tar archive each time it is opened.
"""

import abc
import io
import logging
from pathlib import Path
from typing import IO, Optional, Union

from overrides import overrides

from oci_flatten.utils import file_utils

logger = logging.getLogger(__name__)


class Layer(abc.ABC):
    """An image layer."""

    @property
    @abc.abstractmethod
    def digest(self) -> str:
        """The layer content digest, in ``algorithm:hex`` form."""

    @abc.abstractmethod
    def open(self) -> IO[bytes]:
        """Open a new stream to read the layer archive.

        The caller is responsible for closing the stream.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.digest!r})"


class TarballLayer(Layer):
    """A layer archive stored in a file.

    The archive can be compressed with any method supported by ``tarfile``.

    :param path: The layer archive file.
    :param digest: The layer digest. If not specified, the sha256 digest of
        the file is computed when first requested.
    """

    def __init__(self, path: Union[Path, str], digest: Optional[str] = None):
        self.path = Path(path)
        self._digest = digest

    @property
    @overrides
    def digest(self) -> str:
        if self._digest is None:
            hexdigest = file_utils.calculate_hash(self.path, algorithm="sha256")
            self._digest = f"sha256:{hexdigest}"
        return self._digest

    @overrides
    def open(self) -> IO[bytes]:
        logger.debug("open layer file %s", self.path)
        return open(self.path, "rb")  # pylint: disable=consider-using-with


class BytesLayer(Layer):
    """A layer archive held in memory.

    :param data: The layer archive contents.
    :param digest: The layer digest.
    """

    def __init__(self, data: bytes, digest: str):
        self._data = data
        self._digest = digest

    @property
    @overrides
    def digest(self) -> str:
        return self._digest

    @overrides
    def open(self) -> IO[bytes]:
        return io.BytesIO(self._data)
