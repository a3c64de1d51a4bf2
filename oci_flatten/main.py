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

"""Image flattening command line tool.

This is the main entry point for the oci_flatten package, installed as
the ``oci-flatten`` command. It writes the filesystem tree of an image,
given as an OCI image layout or as a list of layer archives, to a directory.
"""

import argparse
import logging
import sys
from typing import List, Optional

import oci_flatten
import oci_flatten.errors
from oci_flatten import layers as image_layers
from oci_flatten.layout import load_layout
from oci_flatten.materializer import Materializer
from oci_flatten.options import OverwritePolicy, load_options


def main():
    """Run the command-line interface."""
    options = _parse_arguments()

    if options.trace:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(level=log_level)

    try:
        _flatten(options)
    except OSError as err:
        msg = err.strerror
        if err.filename:
            msg = f"{err.filename}: {msg}"
        print(f"Error: {msg}.", file=sys.stderr)
        sys.exit(1)
    except oci_flatten.errors.InvalidOptionsError as err:
        print(f"Error: {err}", file=sys.stderr)
        sys.exit(2)
    except oci_flatten.errors.FlattenError as err:
        print(f"Error: {err}", file=sys.stderr)
        sys.exit(3)
    except (ValueError, TypeError) as err:
        print(f"Error: {err}", file=sys.stderr)
        sys.exit(4)


def _flatten(options: argparse.Namespace) -> None:
    flatten_options = load_options(options.config)
    if options.policy:
        flatten_options = flatten_options.model_copy(
            update={"overwrite_policy": OverwritePolicy(options.policy)}
        )

    if options.layout:
        if options.layers:
            raise ValueError("layer files cannot be used with --layout")
        layers = load_layout(options.layout, manifest_index=options.manifest)
    elif options.layers:
        layers = [image_layers.TarballLayer(path) for path in options.layers]
    else:
        raise ValueError("no layers specified, use --layout or list layer files")

    materializer = Materializer(options.output, options=flatten_options, observer=print)
    materializer.materialize(layers)
    print(f"Image extracted to {str(materializer.root)!r}.")


def _parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    prog = "oci-flatten"
    description = (
        "Write the filesystem tree of a container image to a directory, "
        "applying layers and whiteouts in order."
    )

    parser = argparse.ArgumentParser(prog=prog, description=description, add_help=False)
    parser.add_argument(
        "-h",
        "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="Show this help message and exit.",
    )
    parser.add_argument(
        "layers",
        nargs="*",
        metavar="layer",
        help="Layer archives, from the base layer to the top layer.",
    )
    parser.add_argument(
        "--layout",
        metavar="dirname",
        help="Read layers from the given OCI image layout directory.",
    )
    parser.add_argument(
        "--manifest",
        metavar="index",
        type=int,
        default=0,
        help="The position of the image in the layout index. Default is 0.",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="dirname",
        required=True,
        help="The destination directory. Existing contents are removed.",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="filename",
        help="The options file. Defaults to the user's oci-flatten config.yaml.",
    )
    parser.add_argument(
        "--policy",
        choices=[str(policy) for policy in OverwritePolicy],
        help="How files present in more than one layer are resolved.",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable debug messages.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"oci-flatten {oci_flatten.__version__}",
        help="Display the oci-flatten version and exit.",
    )

    return parser.parse_args(argv)
