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

import os
from pathlib import Path
from typing import Any, Dict, NamedTuple

import pytest

from .fake_layers import LayerBuilder


@pytest.fixture
def new_dir(monkeypatch, tmpdir):
    """Change to a new temporary directory."""
    monkeypatch.chdir(tmpdir)
    return tmpdir


@pytest.fixture
def root(tmp_path) -> Path:
    """A destination directory that doesn't exist yet."""
    return tmp_path / "rootfs"


@pytest.fixture
def layer_builder():
    """Fixture factory for in-memory layer archives."""
    return LayerBuilder


@pytest.fixture(autouse=True)
def temp_xdg(tmp_path, mocker):
    """Use a temporary locaction for XDG directories."""
    config_home = str(tmp_path / ".config")
    mocker.patch("xdg.BaseDirectory.xdg_config_home", new=config_home)
    mocker.patch("xdg.BaseDirectory.xdg_config_dirs", new=[config_home])
    mocker.patch.dict(os.environ, {"XDG_CONFIG_HOME": config_home})


class ChownCall(NamedTuple):
    """Record of a call to os.chown()."""

    owner: int
    group: int
    kwargs: Dict[str, Any]


@pytest.fixture
def mock_chown(mocker) -> Dict[str, ChownCall]:
    """Mock os.chown() and keep a record of calls to it.

    The returned object is a dict where the keys match the ``path`` parameter of the
    os.chown() call and the values are ``ChownCall`` tuples containing the other parameters.
    """
    calls = {}

    def fake_chown(path, uid, gid, **kwargs):
        calls[path] = ChownCall(owner=uid, group=gid, kwargs=kwargs)

    mocker.patch.object(os, "chown", side_effect=fake_chown)

    return calls
