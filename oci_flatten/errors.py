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

"""Flattening errors."""

import dataclasses
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from pydantic_core import ErrorDetails


@dataclasses.dataclass(repr=True)
class FlattenError(Exception):
    """Unexpected error.

    :param brief: Brief description of error.
    :param details: Detailed information.
    :param resolution: Recommendation, if any.
    """

    brief: str
    details: Optional[str] = None
    resolution: Optional[str] = None

    def __str__(self) -> str:
        components = [self.brief]

        if self.details:
            components.append(self.details)

        if self.resolution:
            components.append(self.resolution)

        return "\n".join(components)


class DestinationSetupError(FlattenError):
    """Failed to reset the destination directory.

    :param path: The destination directory.
    :param message: The error message.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        brief = f"Failed to prepare destination directory {path!r}: {message}"
        resolution = "Make sure the destination path is writable and not in use."

        super().__init__(brief=brief, resolution=resolution)


class LayerSourceError(FlattenError):
    """Failed to obtain a layer from the image source.

    :param digest: The layer digest, if it could be obtained.
    :param message: The error message.
    """

    def __init__(self, digest: Optional[str], message: str):
        self.digest = digest
        self.message = message
        if digest:
            brief = f"Failed to open layer {digest!r}: {message}"
        else:
            brief = f"Failed to obtain layer digest: {message}"

        super().__init__(brief=brief)


class LayerReadError(FlattenError):
    """The layer stream is not a readable tar archive.

    :param digest: The layer digest.
    :param message: The error message.
    """

    def __init__(self, digest: str, message: str):
        self.digest = digest
        self.message = message
        brief = f"Failed to read layer {digest!r}: {message}"
        resolution = "The layer may be truncated or corrupted, pull the image again."

        super().__init__(brief=brief, resolution=resolution)


class PathTraversalError(FlattenError):
    """An archive entry would be written outside the destination directory.

    :param name: The archive entry name.
    :param root: The destination directory.
    """

    def __init__(self, name: str, root: str):
        self.name = name
        self.root = root
        brief = f"Refusing to extract {name!r}: path resolves outside {root!r}."
        details = "The image contains a malicious or malformed layer."

        super().__init__(brief=brief, details=details)


class ExtractionError(FlattenError):
    """Failed to write an entry to the destination directory.

    :param path: The file being written.
    :param message: The error message.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        brief = f"Failed to extract {path!r}: {message}"
        resolution = "Make sure paths and permissions are correct."

        super().__init__(brief=brief, resolution=resolution)


class UnsupportedEntryType(FlattenError):
    """The archive contains an entry type that can't be extracted.

    :param entry_type: The tar type flag.
    :param name: The archive entry name.
    """

    def __init__(self, entry_type: str, name: str):
        self.entry_type = entry_type
        self.name = name
        brief = f"Unsupported tar entry type {entry_type!r} for file {name!r}."

        super().__init__(brief=brief)


class InvalidLayoutError(FlattenError):
    """The OCI image layout can't be used.

    :param path: The image layout directory.
    :param message: The error message.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        brief = f"Invalid OCI image layout {path!r}: {message}"
        resolution = "Make sure the path points to a valid OCI image layout."

        super().__init__(brief=brief, resolution=resolution)


class InvalidOptionsError(FlattenError):
    """The flattening options are not valid.

    :param message: The error message.
    """

    def __init__(self, message: str):
        self.message = message
        brief = "Invalid flattening options."
        details = message
        resolution = "Review the options file and make sure it's correct."

        super().__init__(brief=brief, details=details, resolution=resolution)

    @classmethod
    def from_validation_error(cls, error_list: List["ErrorDetails"]):
        """Create an InvalidOptionsError from a pydantic error list.

        :param error_list: A list of dictionaries containing pydantic error definitions.
        """
        formatted_errors: List[str] = []

        for error in error_list:
            loc = error.get("loc")
            msg = error.get("msg")

            if not (loc and msg) or not isinstance(loc, tuple):
                continue

            field = ".".join(str(part) for part in loc)
            if msg == "Field required":
                formatted_errors.append(f"- field {field!r} is required")
            elif msg == "Extra inputs are not permitted":
                formatted_errors.append(f"- extra field {field!r} not permitted")
            else:
                formatted_errors.append(f"- {msg} in field {field!r}")

        return cls(message="\n".join(formatted_errors))
