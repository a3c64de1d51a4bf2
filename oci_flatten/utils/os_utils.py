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

"""Utilities related to the operating system."""

import logging
import os
import sys

logger = logging.getLogger(__name__)


def can_restore_ownership() -> bool:
    """Verify whether file ownership can be set to arbitrary ids.

    Ownership can only be restored on platforms with a Unix-style ownership
    model, and only by a privileged process.

    :return: Whether the current process can change file owners.
    """
    # Windows has no "os.chown" implementation.
    if sys.platform == "win32" or not hasattr(os, "geteuid"):
        return False

    euid = os.geteuid()
    logger.debug("effective user id: %d", euid)

    return euid == 0
