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

"""Flatten a stack of image layers into a directory."""

import logging
import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from oci_flatten import errors
from oci_flatten.extract import EntryExtractor
from oci_flatten.layers import Layer
from oci_flatten.options import FlattenOptions
from oci_flatten.processor import LayerProcessor
from oci_flatten.state import DirectoryRecord, LayerState
from oci_flatten.utils import file_utils

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class Materializer:
    """Write the filesystem tree of an image to a directory.

    :param root: The destination directory. Existing contents are removed.
    :param options: The flattening options.
    :param observer: A function called with a progress message for each
        layer. If not specified, messages are logged.
    """

    def __init__(
        self,
        root: Union[Path, str],
        *,
        options: Optional[FlattenOptions] = None,
        observer: Optional[ProgressCallback] = None,
    ):
        if options is None:
            options = FlattenOptions()

        self._root = Path(os.path.abspath(root))
        self._options = options
        self._observer = observer or logger.info
        self._extractor = EntryExtractor(
            restore_ownership=options.restore_ownership,
            restore_timestamps=options.restore_timestamps,
        )
        self._processor = LayerProcessor(
            self._root, self._extractor, policy=options.overwrite_policy
        )

    @property
    def root(self) -> Path:
        """The destination directory."""
        return self._root

    def materialize(self, layers: Sequence[Layer]) -> None:
        """Extract the image layers to the destination directory.

        :param layers: The image layers, from the base layer to the top layer.

        :raises DestinationSetupError: If the destination can't be reset.
        :raises LayerSourceError: If a layer can't be obtained.
        :raises FlattenError: If a layer can't be extracted.
        """
        self._reset_root()

        state = LayerState()
        total = len(layers)

        # Layers are processed in reverse order: whiteouts are then found
        # before the entries they hide in lower layers.
        for position, layer in enumerate(reversed(layers), start=1):
            self._process(layer, position, total, state)

        self._finish_directories(state.directories)
        logger.debug("flattened %d layers into %s", total, self._root)

    def _reset_root(self) -> None:
        try:
            if self._root.exists() or self._root.is_symlink():
                logger.debug("remove existing destination %s", self._root)
                file_utils.remove_path(self._root)
            self._root.mkdir(mode=0o777, parents=True)
        except OSError as err:
            raise errors.DestinationSetupError(
                str(self._root), err.strerror or str(err)
            ) from err

    def _process(
        self, layer: Layer, position: int, total: int, state: LayerState
    ) -> None:
        try:
            digest = layer.digest
        except OSError as err:
            raise errors.LayerSourceError(None, err.strerror or str(err)) from err

        self._notify(f"Extracting layer {digest!r} ({position}/{total})")

        try:
            stream = layer.open()
        except OSError as err:
            raise errors.LayerSourceError(digest, err.strerror or str(err)) from err

        with stream:
            state.begin_layer()
            self._processor.process_layer(stream, state, digest=digest)
            state.end_layer()

    def _notify(self, message: str) -> None:
        try:
            self._observer(message)
        except Exception:  # pylint: disable=broad-except
            logger.exception("progress observer failed")

    def _finish_directories(self, directories: List[DirectoryRecord]) -> None:
        # Deepest first, so setting a parent's times is the last change to it.
        for record in sorted(
            directories, key=lambda r: len(r.path.parts), reverse=True
        ):
            if record.path.is_symlink() or not record.path.is_dir():
                # Replaced or whited out by a later entry.
                continue
            self._extractor.finish_directory(record.member, record.path)


def flatten(
    layers: Sequence[Layer],
    root: Union[Path, str],
    *,
    options: Optional[FlattenOptions] = None,
    observer: Optional[ProgressCallback] = None,
) -> Path:
    """Flatten image layers into a directory.

    :param layers: The image layers, from the base layer to the top layer.
    :param root: The destination directory. Existing contents are removed.
    :param options: The flattening options.
    :param observer: A function called with a progress message for each layer.

    :returns: The absolute path of the destination directory.
    """
    materializer = Materializer(root, options=options, observer=observer)
    materializer.materialize(layers)
    return materializer.root
