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

import gzip
import io
import os
import tarfile
from pathlib import PurePosixPath

import pytest
from oci_flatten import errors
from oci_flatten.extract import EntryExtractor
from oci_flatten.options import OverwritePolicy
from oci_flatten.processor import LayerProcessor
from oci_flatten.state import LayerState


@pytest.fixture
def state():
    return LayerState()


def make_processor(root, policy=OverwritePolicy.NEWEST_WINS):
    root.mkdir(exist_ok=True)
    extractor = EntryExtractor(restore_ownership=False)
    return LayerProcessor(root, extractor, policy=policy)


def process(processor, state, builder):
    state.begin_layer()
    processor.process_layer(io.BytesIO(builder.build()), state)
    state.end_layer()


class TestProcessLayer:
    """Entries of a single layer."""

    def test_files_and_directories(self, root, state, layer_builder):
        processor = make_processor(root)
        layer = (
            layer_builder()
            .add_dir("./")
            .add_dir("etc")
            .add_file("etc/conf", b"v1")
            .add_file("usr/bin/tool", b"#!/bin/sh", mode=0o755)
        )

        process(processor, state, layer)

        assert (root / "etc").is_dir()
        assert (root / "etc" / "conf").read_bytes() == b"v1"
        assert (root / "usr" / "bin" / "tool").read_bytes() == b"#!/bin/sh"
        assert len(state.directories) == 1
        assert state.directories[0].path == root / "etc"

    def test_root_entry_skipped(self, root, state, layer_builder):
        processor = make_processor(root)
        os.chmod(root, 0o755)

        process(processor, state, layer_builder().add_dir(".", mode=0o700))

        assert state.directories == []
        assert os.stat(root).st_mode & 0o777 == 0o755

    def test_backslash_names(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_file("dir\\sub\\file", b"x"))

        assert (root / "dir" / "sub" / "file").read_bytes() == b"x"

    def test_gzip_stream(self, root, state, layer_builder):
        processor = make_processor(root)
        data = gzip.compress(layer_builder().add_file("foo", b"x").build())

        processor.process_layer(io.BytesIO(data), state)

        assert (root / "foo").read_bytes() == b"x"

    def test_skipped_types(self, root, state, layer_builder):
        processor = make_processor(root)
        layer = (
            layer_builder()
            .add_file("target", b"x")
            .add_symlink("symlink", "/etc/shadow")
            .add_hardlink("hardlink", "target")
            .add_special("chr", tarfile.CHRTYPE)
            .add_special("blk", tarfile.BLKTYPE)
            .add_special("fifo", tarfile.FIFOTYPE)
        )

        process(processor, state, layer)

        assert sorted(os.listdir(root)) == ["target"]

    def test_unsupported_type(self, root, state, layer_builder):
        processor = make_processor(root)
        layer = layer_builder().add_special("weird", b"Z")

        with pytest.raises(errors.UnsupportedEntryType) as raised:
            process(processor, state, layer)
        assert raised.value.name == "weird"

    @pytest.mark.parametrize("name", ["../evil", "a/../../evil", "..\\evil"])
    def test_path_traversal(self, tmp_path, root, state, layer_builder, name):
        processor = make_processor(root)

        with pytest.raises(errors.PathTraversalError):
            process(processor, state, layer_builder().add_file(name, b"x"))
        assert not (tmp_path / "evil").exists()

    def test_absolute_name_contained(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_file("/etc/passwd", b"x"))

        assert (root / "etc" / "passwd").read_bytes() == b"x"

    def test_invalid_stream(self, root, state):
        processor = make_processor(root)

        with pytest.raises(errors.LayerReadError) as raised:
            processor.process_layer(
                io.BytesIO(b"not a tar archive" * 100), state, digest="sha256:abc"
            )
        assert raised.value.digest == "sha256:abc"

    def test_truncated_stream(self, root, state, layer_builder):
        processor = make_processor(root)
        data = layer_builder().add_file("foo", b"x" * 10000).build()

        with pytest.raises(errors.LayerReadError):
            processor.process_layer(io.BytesIO(data[:2048]), state)

    def test_duplicate_entry_in_layer(self, root, state, layer_builder):
        processor = make_processor(root)
        layer = layer_builder().add_file("foo", b"first").add_file("foo", b"second")

        process(processor, state, layer)

        assert (root / "foo").read_bytes() == b"second"

    def test_directory_replaces_file_in_layer(self, root, state, layer_builder):
        processor = make_processor(root)
        layer = layer_builder().add_file("foo", b"x").add_dir("foo").add_file("foo/bar")

        process(processor, state, layer)

        assert (root / "foo" / "bar").is_file()

    def test_opaque_marker_ignored(self, root, state, layer_builder, caplog):
        processor = make_processor(root)
        layer = layer_builder().add_dir("dir").add_whiteout("dir/.wh..wh..opq")

        process(processor, state, layer)

        assert os.listdir(root / "dir") == []
        assert "Opaque directory marker 'dir/.wh..wh..opq' is not supported" in caplog.text

    def test_whiteout_is_not_written(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_whiteout("dir/.wh.foo"))

        assert not (root / "dir" / ".wh.foo").exists()
        assert state.is_deleted(PurePosixPath("dir/foo"))


class TestWhiteouts:
    """Whiteouts hide entries from lower layers."""

    @pytest.mark.parametrize("policy", list(OverwritePolicy))
    def test_whiteout_file(self, root, state, layer_builder, policy):
        processor = make_processor(root, policy)

        # newest layer first
        process(processor, state, layer_builder().add_whiteout("a/.wh.b.txt"))
        process(processor, state, layer_builder().add_dir("a").add_file("a/b.txt", b"X"))

        assert (root / "a").is_dir()
        assert not (root / "a" / "b.txt").exists()

    @pytest.mark.parametrize("policy", list(OverwritePolicy))
    def test_whiteout_directory_cascade(self, root, state, layer_builder, policy):
        processor = make_processor(root, policy)

        process(processor, state, layer_builder().add_whiteout(".wh.opt"))
        process(
            processor,
            state,
            layer_builder()
            .add_dir("opt")
            .add_dir("opt/app")
            .add_file("opt/app/bin", b"x")
            .add_file("optional", b"y"),
        )

        assert not (root / "opt").exists()
        assert (root / "optional").read_bytes() == b"y"

    def test_whiteout_spans_layers(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_whiteout(".wh.foo"))
        process(processor, state, layer_builder().add_file("bar", b"x"))
        process(processor, state, layer_builder().add_file("foo", b"y"))

        assert (root / "bar").is_file()
        assert not (root / "foo").exists()

    def test_whiteout_same_layer_kept(self, root, state, layer_builder):
        processor = make_processor(root)
        layer = layer_builder().add_file("foo", b"x").add_whiteout(".wh.foo")

        process(processor, state, layer)

        assert (root / "foo").read_bytes() == b"x"

    def test_whiteout_keeps_newer_file(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_file("foo", b"newest"))
        process(processor, state, layer_builder().add_whiteout(".wh.foo"))
        process(processor, state, layer_builder().add_file("foo", b"oldest"))

        assert (root / "foo").read_bytes() == b"newest"

    def test_whiteout_removes_in_compat_mode(self, root, state, layer_builder):
        processor = make_processor(root, OverwritePolicy.LAST_PROCESSED_WINS)

        process(processor, state, layer_builder().add_file("foo", b"newest"))
        process(processor, state, layer_builder().add_whiteout(".wh.foo"))

        assert not (root / "foo").exists()

    def test_whiteout_missing_target(self, root, state, layer_builder):
        processor = make_processor(root, OverwritePolicy.LAST_PROCESSED_WINS)

        process(processor, state, layer_builder().add_whiteout("no/such/.wh.file"))

        assert os.listdir(root) == []

    def test_whiteout_removal_error(self, mocker, root, state, layer_builder, caplog):
        processor = make_processor(root, OverwritePolicy.LAST_PROCESSED_WINS)
        mocker.patch(
            "oci_flatten.utils.file_utils.remove_path",
            side_effect=PermissionError(13, "Permission denied"),
        )
        layer = layer_builder().add_whiteout(".wh.foo").add_file("bar", b"x")

        process(processor, state, layer)

        assert (root / "bar").is_file()
        assert "Failed to remove whited out path" in caplog.text

    def test_whiteout_without_target(self, root, state, layer_builder, caplog):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_whiteout("dir/.wh."))

        assert "does not name a file" in caplog.text
        assert state.deleted == set()

    @pytest.mark.parametrize("policy", list(OverwritePolicy))
    @pytest.mark.parametrize(
        "name", [".wh...", "a/.wh...", "a/b/.wh...", ".wh..", "a/.wh.."]
    )
    def test_whiteout_directory_reference(
        self, tmp_path, state, layer_builder, policy, name
    ):
        (tmp_path / "outside").mkdir()
        secret = tmp_path / "outside" / "secret"
        secret.write_text("keep")
        root = tmp_path / "outside" / "rootfs"
        processor = make_processor(root, policy)

        process(processor, state, layer_builder().add_file("a/b/file", b"x"))
        with pytest.raises(errors.PathTraversalError) as raised:
            process(processor, state, layer_builder().add_whiteout(name))

        assert raised.value.name == name
        assert raised.value.root == str(root)
        assert secret.read_text() == "keep"
        assert (root / "a" / "b" / "file").read_bytes() == b"x"
        assert state.deleted == set()
        assert state.pending_deleted == set()


class TestOverwritePolicy:
    """Entries present in more than one layer."""

    def _two_layers(self, processor, state, layer_builder):
        # newest layer first
        process(processor, state, layer_builder().add_file("etc/conf", b"v2", mode=0o644))
        process(processor, state, layer_builder().add_file("etc/conf", b"v1", mode=0o600))

    def test_newest_wins(self, root, state, layer_builder):
        processor = make_processor(root, OverwritePolicy.NEWEST_WINS)
        self._two_layers(processor, state, layer_builder)

        assert (root / "etc" / "conf").read_bytes() == b"v2"
        assert os.stat(root / "etc" / "conf").st_mode & 0o777 == 0o644

    def test_last_processed_wins(self, root, state, layer_builder):
        processor = make_processor(root, OverwritePolicy.LAST_PROCESSED_WINS)
        self._two_layers(processor, state, layer_builder)

        assert (root / "etc" / "conf").read_bytes() == b"v1"
        assert os.stat(root / "etc" / "conf").st_mode & 0o777 == 0o666

    def test_newer_file_hides_older_directory(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_file("data", b"file"))
        process(
            processor,
            state,
            layer_builder().add_dir("data").add_file("data/inner", b"x"),
        )

        assert (root / "data").read_bytes() == b"file"

    def test_newer_symlink_hides_older_file(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_symlink("bin/sh", "dash"))
        process(processor, state, layer_builder().add_file("bin/sh", b"old shell"))

        assert not os.path.lexists(root / "bin" / "sh")

    def test_implicit_directory_kept(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_file("app/config", b"x"))
        process(processor, state, layer_builder().add_file("app", b"old file"))

        assert (root / "app" / "config").read_bytes() == b"x"

    def test_directories_merged(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_dir("etc").add_file("etc/a", b"a"))
        process(processor, state, layer_builder().add_dir("etc").add_file("etc/b", b"b"))

        assert sorted(os.listdir(root / "etc")) == ["a", "b"]
        # only the newest directory entry is recorded
        assert len(state.directories) == 1

    def test_implicit_directory_gets_attributes(self, root, state, layer_builder):
        processor = make_processor(root)

        process(processor, state, layer_builder().add_file("etc/a", b"a"))
        process(processor, state, layer_builder().add_dir("etc", mode=0o700))

        assert len(state.directories) == 1
        assert state.directories[0].member.mode == 0o700

    def test_compat_file_replaces_directory(self, root, state, layer_builder):
        processor = make_processor(root, OverwritePolicy.LAST_PROCESSED_WINS)

        process(processor, state, layer_builder().add_dir("data").add_file("data/inner"))
        process(processor, state, layer_builder().add_file("data", b"file"))

        assert (root / "data").read_bytes() == b"file"
