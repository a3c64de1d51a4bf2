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

"""Flattening options and options file handling."""

import enum
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pydantic
import yaml
from xdg import BaseDirectory  # type: ignore

from oci_flatten import errors

logger = logging.getLogger(__name__)

_CONFIG_RESOURCE = "oci-flatten"
_CONFIG_FILE = "config.yaml"


class OverwritePolicy(str, enum.Enum):
    """How entries written by more than one layer are resolved.

    Layers are processed from the newest to the oldest.

    :cvar NEWEST_WINS: The entry from the newest layer is kept, entries from
        older layers at the same path are skipped.
    :cvar LAST_PROCESSED_WINS: Each entry replaces what is on disk, so the
        entry from the oldest layer is kept.
    """

    NEWEST_WINS = "newest-wins"
    LAST_PROCESSED_WINS = "last-processed-wins"

    def __str__(self) -> str:
        return self.value


class FlattenOptions(pydantic.BaseModel):
    """Options controlling how layers are flattened.

    Notes
    -----
    - ``restore_ownership`` is optional. When unset, numeric owner and group
      are restored only if the process is privileged.
    - ``restore_timestamps`` restores access and modification times of files
      and directories.

    """

    overwrite_policy: OverwritePolicy = OverwritePolicy.NEWEST_WINS
    restore_ownership: Optional[bool] = None
    restore_timestamps: bool = True

    model_config = pydantic.ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=lambda s: s.replace("_", "-"),
        populate_by_name=True,
    )

    @classmethod
    def unmarshal(cls, data: Dict[str, Any]) -> "FlattenOptions":
        """Create and populate a new ``FlattenOptions`` object from dictionary data.

        :param data: The dictionary data to unmarshal.

        :return: The newly created object.

        :raise InvalidOptionsError: If the data fails validation.
        """
        if not isinstance(data, dict):
            raise errors.InvalidOptionsError("options must be a mapping")

        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as err:
            raise errors.InvalidOptionsError.from_validation_error(
                err.errors()
            ) from err


def default_options_path() -> Optional[Path]:
    """Locate the user's options file, if one exists.

    :return: The path to the first options file found in the XDG configuration
        directories, or None.
    """
    config_dir = BaseDirectory.load_first_config(_CONFIG_RESOURCE)
    if not config_dir:
        return None

    path = Path(config_dir, _CONFIG_FILE)
    if not path.is_file():
        return None

    return path


def load_options(path: Optional[Union[Path, str]] = None) -> FlattenOptions:
    """Read flattening options from a YAML file.

    :param path: The options file. If not specified, the options file in the
        user's configuration directory is used if it exists.

    :return: The loaded options, or the defaults if there is no file to load.

    :raise InvalidOptionsError: If the file contents are not valid.
    """
    if path is None:
        path = default_options_path()
        if path is None:
            return FlattenOptions()

    logger.debug("load options from %s", path)
    with open(path) as options_file:
        try:
            data = yaml.safe_load(options_file)
        except yaml.YAMLError as err:
            raise errors.InvalidOptionsError(f"{path}: {err}") from err

    if data is None:
        return FlattenOptions()

    return FlattenOptions.unmarshal(data)
