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

"""Read layers from an OCI image layout directory.

Relevant OCI documentation available at:
https://github.com/opencontainers/image-spec/blob/main/image-layout.md
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from oci_flatten import errors
from oci_flatten.layers import Layer, TarballLayer

logger = logging.getLogger(__name__)

_INDEX_MEDIA_TYPES = (
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
)

_LAYER_MEDIA_TYPES = (
    "application/vnd.oci.image.layer.v1.tar",
    "application/vnd.oci.image.layer.v1.tar+gzip",
    "application/vnd.oci.image.layer.nondistributable.v1.tar",
    "application/vnd.oci.image.layer.nondistributable.v1.tar+gzip",
    "application/vnd.docker.image.rootfs.diff.tar",
    "application/vnd.docker.image.rootfs.diff.tar.gzip",
    "application/vnd.docker.image.rootfs.foreign.diff.tar.gzip",
)

# Nested indexes deeper than this are considered malformed.
_MAX_INDEX_DEPTH = 8


def load_layout(path: Union[Path, str], *, manifest_index: int = 0) -> List[Layer]:
    """List the layers of an image stored in an OCI image layout.

    :param path: The image layout directory.
    :param manifest_index: The position of the image manifest in the layout
        index. Nested indexes are followed using their first manifest.

    :returns: The image layers, from the base layer to the top layer.

    :raises InvalidLayoutError: If the layout can't be read.
    """
    layout = _Layout(Path(path))
    return layout.layers(manifest_index)


class _Layout:
    def __init__(self, path: Path):
        self._path = path

    def layers(self, manifest_index: int) -> List[Layer]:
        if not (self._path / "oci-layout").is_file():
            raise errors.InvalidLayoutError(str(self._path), "missing 'oci-layout' file")

        index = self._read_json(self._path / "index.json")
        descriptor = self._select(index, manifest_index)

        for _ in range(_MAX_INDEX_DEPTH):
            if descriptor.get("mediaType") not in _INDEX_MEDIA_TYPES:
                break
            descriptor = self._select(self._read_blob(descriptor), 0)
        else:
            raise errors.InvalidLayoutError(str(self._path), "too many nested indexes")

        manifest = self._read_blob(descriptor)
        layers: List[Layer] = []
        for layer in manifest.get("layers", []):
            media_type = layer.get("mediaType")
            if media_type not in _LAYER_MEDIA_TYPES:
                raise errors.InvalidLayoutError(
                    str(self._path), f"unsupported layer media type {media_type!r}"
                )
            digest = self._digest(layer)
            layers.append(TarballLayer(self._blob_path(digest), digest=digest))

        logger.debug("layout %s: %d layers", self._path, len(layers))
        return layers

    def _select(self, index: Dict[str, Any], position: int) -> Dict[str, Any]:
        manifests = index.get("manifests")
        if not manifests:
            raise errors.InvalidLayoutError(str(self._path), "index has no manifests")

        if position < 0:
            raise errors.InvalidLayoutError(
                str(self._path), f"invalid manifest position {position}"
            )

        try:
            return manifests[position]
        except IndexError:
            raise errors.InvalidLayoutError(
                str(self._path),
                f"manifest {position} requested, index has {len(manifests)}",
            ) from None

    def _digest(self, descriptor: Dict[str, Any]) -> str:
        digest = descriptor.get("digest")
        if not isinstance(digest, str) or ":" not in digest:
            raise errors.InvalidLayoutError(
                str(self._path), f"invalid descriptor digest {digest!r}"
            )
        return digest

    def _blob_path(self, digest: str) -> Path:
        algorithm, encoded = digest.split(":", 1)
        if not (algorithm.isalnum() and encoded.isalnum()):
            raise errors.InvalidLayoutError(
                str(self._path), f"invalid descriptor digest {digest!r}"
            )

        path = self._path / "blobs" / algorithm / encoded
        if not path.is_file():
            raise errors.InvalidLayoutError(str(self._path), f"missing blob {digest}")
        return path

    def _read_blob(self, descriptor: Dict[str, Any]) -> Dict[str, Any]:
        return self._read_json(self._blob_path(self._digest(descriptor)))

    def _read_json(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as json_file:
                data = json.load(json_file)
        except FileNotFoundError:
            raise errors.InvalidLayoutError(
                str(self._path), f"missing {path.name!r} file"
            ) from None
        except (OSError, ValueError) as err:
            raise errors.InvalidLayoutError(
                str(self._path), f"cannot read {path.name!r}: {err}"
            ) from err

        if not isinstance(data, dict):
            raise errors.InvalidLayoutError(
                str(self._path), f"{path.name!r} is not a JSON object"
            )
        return data
