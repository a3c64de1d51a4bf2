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

"""Flatten container image layers into a directory."""

from .errors import FlattenError
from .extract import EntryAction, EntryExtractor, normalize_mode
from .layers import BytesLayer, Layer, TarballLayer
from .layout import load_layout
from .materializer import Materializer, flatten
from .options import FlattenOptions, OverwritePolicy, load_options
from .processor import LayerProcessor
from .state import LayerState

try:
    from ._version import __version__
except ImportError:  # pragma: no cover
    from importlib.metadata import version, PackageNotFoundError

    try:
        __version__ = version("oci-flatten")
    except PackageNotFoundError:
        __version__ = "dev"


__all__ = [
    "__version__",
    "BytesLayer",
    "EntryAction",
    "EntryExtractor",
    "FlattenError",
    "FlattenOptions",
    "Layer",
    "LayerProcessor",
    "LayerState",
    "Materializer",
    "OverwritePolicy",
    "TarballLayer",
    "flatten",
    "load_layout",
    "load_options",
    "normalize_mode",
]
