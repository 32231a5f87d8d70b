"""Tests for MoveEngine — move, merge, rename and conflict policies."""

from __future__ import annotations

import pytest

from davspace.fs.exceptions import CrossMountError, PhysicalBackendError
from davspace.fs.local_disk import LocalDiskStorage
from davspace.fs.mounts import MountConfig
from davspace.fs.moves import MoveEngine
from davspace.fs.types import ItemKind, Resolution


class FailingMoveStorage(LocalDiskStorage):
    """LocalDiskStorage whose move always fails."""

    async def move(self, old_path, new_path, mount_id, overwrite=False):
        raise PhysicalBackendError("backend unavailable")


class ConnectionResetStorage(LocalDiskStorage):
    """LocalDiskStorage whose move drops the connection for one file."""

    async def move(self, old_path, new_path, mount_id, overwrite=False):
        if old_path.endswith("bad.txt"):
            raise ConnectionError("connection reset")
        await super().move(old_path, new_path, mount_id, overwrite=overwrite)


async def _file_row(ws, file_id):
    return await ws.namespace.get_file(ws.session, file_id, ws.user)


async def _folder_row(ws, folder_id):
    return await ws.namespace.get_folder(ws.session, folder_id, ws.user)


# ---------------------------------------------------------------------------
# Plain moves
# ---------------------------------------------------------------------------


class TestPlainMove:
    async def test_move_file(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "a.txt", b"hello")

        report = await moves.move_item(ws.session, f, ItemKind.FILE, dst, ws.user)

        assert (report.moved, report.skipped, report.errors) == (1, 0, 0)
        row = await _file_row(ws, f)
        assert row.folder_id == dst
        assert row.file_id == "/dst/a.txt"
        assert ws.disk("/dst/a.txt").read_bytes() == b"hello"
        assert not ws.disk("/src/a.txt").exists()

    async def test_move_folder_rewrites_descendant_files(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        b = await ws.folder(a, "B")
        target = await ws.folder(ws.mount_folder_id, "T")
        top = await ws.file(a, "top.txt")
        deep = await ws.file(b, "deep.txt")

        report = await moves.move_item(ws.session, a, ItemKind.FOLDER, target, ws.user)

        assert report.moved == 1
        assert report.success is True
        assert (await _folder_row(ws, a)).parent_id == target
        assert (await _file_row(ws, top)).file_id == "/T/A/top.txt"
        assert (await _file_row(ws, deep)).file_id == "/T/A/B/deep.txt"
        assert ws.disk("/T/A/B/deep.txt").exists()
        assert not ws.disk("/A").exists()
        location = await ws.resolver.physical_path(ws.session, deep, ItemKind.FILE, ws.user)
        assert location.remote_path == "/T/A/B/deep.txt"

    async def test_move_into_mount_folder(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        f = await ws.file(a, "a.txt")
        report = await moves.move_item(ws.session, f, "file", ws.mount_folder_id, ws.user)
        assert report.moved == 1
        assert (await _file_row(ws, f)).file_id == "/a.txt"

    async def test_already_in_target(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        f = await ws.file(a, "a.txt")
        report = await moves.move_item(ws.session, f, ItemKind.FILE, a, ws.user)
        assert (report.moved, report.skipped, report.errors) == (0, 1, 0)

    @pytest.mark.parametrize("policy", ["overwrite", "rename", "merge"])
    async def test_policy_without_conflict_is_plain_move(self, ws, moves, policy):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "a.txt")
        report = await moves.move_item(
            ws.session, f, ItemKind.FILE, dst, ws.user, {"a.txt": policy}
        )
        assert report.moved == 1
        assert (await _file_row(ws, f)).file_name == "a.txt"

    async def test_file_moves_from_stored_location(self, ws, moves):
        dst = await ws.folder(ws.mount_folder_id, "dst")
        ws.disk("/legacy").mkdir()
        ws.disk("/legacy/a.txt").write_bytes(b"kept")
        row = await ws.namespace.add_file(
            ws.session,
            file_name="a.txt",
            folder_id=ws.mount_folder_id,
            user_id=ws.user,
            file_id="/legacy/a.txt",
            mount_id="m1",
        )
        await ws.session.commit()

        report = await moves.move_item(ws.session, row.message_id, ItemKind.FILE, dst, ws.user)

        assert report.moved == 1
        assert (await _file_row(ws, row.message_id)).file_id == "/dst/a.txt"
        assert ws.disk("/dst/a.txt").read_bytes() == b"kept"
        assert not ws.disk("/legacy/a.txt").exists()

# ---------------------------------------------------------------------------
# Refused moves
# ---------------------------------------------------------------------------


class TestRefused:
    async def test_root_folder(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        folders_before = await ws.count_folders()

        report = await moves.move_item(ws.session, ws.root_id, ItemKind.FOLDER, a, ws.user)

        assert (report.moved, report.skipped, report.errors) == (0, 0, 1)
        assert (await _folder_row(ws, ws.root_id)).parent_id is None
        assert await ws.count_folders() == folders_before

    async def test_mount_folder(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        report = await moves.move_item(ws.session, ws.mount_folder_id, ItemKind.FOLDER, a, ws.user)
        assert report.errors == 1
        assert (await _folder_row(ws, ws.mount_folder_id)).parent_id == ws.root_id

    async def test_into_root(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        report = await moves.move_item(ws.session, a, ItemKind.FOLDER, ws.root_id, ws.user)
        assert report.errors == 1

    async def test_into_itself(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        report = await moves.move_item(ws.session, a, ItemKind.FOLDER, a, ws.user)
        assert report.errors == 1

    async def test_into_descendant(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        b = await ws.folder(a, "B")
        report = await moves.move_item(ws.session, a, ItemKind.FOLDER, b, ws.user)
        assert report.errors == 1
        assert (await _folder_row(ws, a)).parent_id == ws.mount_folder_id

    async def test_missing_item(self, ws, moves):
        report = await moves.move_item(ws.session, 9999, ItemKind.FILE, ws.mount_folder_id, ws.user)
        assert report.errors == 1

    async def test_missing_target(self, ws, moves):
        f = await ws.file(ws.mount_folder_id, "a.txt")
        report = await moves.move_item(ws.session, f, ItemKind.FILE, 9999, ws.user)
        assert report.errors == 1

    async def test_cross_mount(self, ws, moves, tmp_path):
        usb_dir = tmp_path / "usb"
        usb_dir.mkdir()
        usb = MountConfig(mount_name="usb", url=str(usb_dir), mount_id="m2")
        ws.registry.add_mount(usb)
        usb_folder = await ws.resolver.ensure_mount_folder(ws.session, ws.user, usb)
        await ws.session.commit()
        f = await ws.file(ws.mount_folder_id, "a.txt")

        with pytest.raises(CrossMountError):
            await moves.move_item(ws.session, f, ItemKind.FILE, usb_folder, ws.user)
        assert ws.disk("/a.txt").exists()
        assert (await _file_row(ws, f)).folder_id == ws.mount_folder_id

        report = await moves.move_items(ws.session, [(f, ItemKind.FILE)], usb_folder, ws.user)
        assert report.errors == 1

    async def test_physical_failure_leaves_rows(self, ws, namespace, resolver, registry, deletion):
        failing = MoveEngine(namespace, resolver, FailingMoveStorage(registry, resolver), deletion)
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "a.txt")

        report = await failing.move_item(ws.session, f, ItemKind.FILE, dst, ws.user)

        assert (report.moved, report.errors) == (0, 1)
        row = await _file_row(ws, f)
        assert row.folder_id == src
        assert row.file_id == "/src/a.txt"


# ---------------------------------------------------------------------------
# Conflict policies
# ---------------------------------------------------------------------------


class TestConflicts:
    async def test_default_skip(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "a.txt", b"mine")
        await ws.file(dst, "a.txt", b"theirs")

        report = await moves.move_item(ws.session, f, ItemKind.FILE, dst, ws.user)

        assert (report.moved, report.skipped, report.errors) == (0, 1, 0)
        assert (await _file_row(ws, f)).folder_id == src
        assert ws.disk("/src/a.txt").read_bytes() == b"mine"
        assert ws.disk("/dst/a.txt").read_bytes() == b"theirs"

    async def test_explicit_skip(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "a.txt")
        await ws.file(dst, "a.txt")
        report = await moves.move_item(
            ws.session, f, ItemKind.FILE, dst, ws.user, {"a.txt": Resolution.SKIP}
        )
        assert report.skipped == 1

    async def test_rename_suffixes_are_deterministic(self, ws, moves):
        dst = await ws.folder(ws.mount_folder_id, "dst")
        await ws.file(dst, "r.txt")
        await ws.file(dst, "r (1).txt")
        src = await ws.folder(ws.mount_folder_id, "src")
        f = await ws.file(src, "r.txt")

        report = await moves.move_item(ws.session, f, ItemKind.FILE, dst, ws.user, {"r.txt": "rename"})

        assert report.moved == 1
        row = await _file_row(ws, f)
        assert row.file_name == "r (2).txt"
        assert row.file_id == "/dst/r (2).txt"
        assert ws.disk("/dst/r (2).txt").exists()

    async def test_rename_folder(self, ws, moves):
        dst = await ws.folder(ws.mount_folder_id, "dst")
        await ws.folder(dst, "photos.2024")
        src = await ws.folder(ws.mount_folder_id, "src")
        p = await ws.folder(src, "photos.2024")
        await moves.move_item(ws.session, p, ItemKind.FOLDER, dst, ws.user, {"photos.2024": "rename"})
        assert (await _folder_row(ws, p)).name == "photos.2024 (1)"

    async def test_find_available_name(self, ws, moves):
        await ws.file(ws.mount_folder_id, "a.txt")
        assert await moves.find_available_name(ws.session, "a.txt", ws.mount_folder_id, ws.user, False) == "a (1).txt"
        assert await moves.find_available_name(ws.session, "b.txt", ws.mount_folder_id, ws.user, False) == "b.txt"

    async def test_overwrite(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "a.txt", b"new")
        old = await ws.file(dst, "a.txt", b"old")
        files_before = await ws.count_files()

        report = await moves.move_item(ws.session, f, ItemKind.FILE, dst, ws.user, {"a.txt": "overwrite"})

        assert report.moved == 1
        assert await ws.count_files() == files_before - 1
        assert await _file_row(ws, old) is None
        assert (await _file_row(ws, f)).folder_id == dst
        assert ws.disk("/dst/a.txt").read_bytes() == b"new"

    async def test_overwrite_refused_when_target_contains_item(self, ws, moves):
        t = await ws.folder(ws.mount_folder_id, "T")
        outer = await ws.folder(t, "X")
        inner = await ws.folder(outer, "X")
        await ws.file(inner, "precious.txt")
        files_before = await ws.count_files()

        report = await moves.move_item(ws.session, inner, ItemKind.FOLDER, t, ws.user, {"X": "overwrite"})

        assert (report.moved, report.errors) == (0, 1)
        assert await ws.count_files() == files_before
        assert await _folder_row(ws, outer) is not None
        assert (await _folder_row(ws, inner)).parent_id == outer
        assert ws.disk("/T/X/X/precious.txt").exists()

    async def test_merge_type_mismatch_skipped(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        f = await ws.file(src, "thing")
        await ws.folder(dst, "thing")
        report = await moves.move_item(ws.session, f, ItemKind.FILE, dst, ws.user, {"thing": "merge"})
        assert (report.moved, report.skipped) == (0, 1)

    async def test_check_conflicts(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        s = await ws.folder(src, "S")
        f = await ws.file(src, "a.txt")
        free = await ws.file(src, "free.txt")
        await ws.folder(dst, "S")
        await ws.file(dst, "a.txt")

        conflicts = await moves.check_conflicts(
            ws.session,
            [(s, ItemKind.FOLDER), (f, ItemKind.FILE), (free, ItemKind.FILE)],
            dst,
            ws.user,
        )

        assert conflicts.folder_conflicts == ["S"]
        assert conflicts.file_conflicts == ["a.txt"]
        assert conflicts.has_conflicts is True


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMerge:
    async def test_merge_deletes_emptied_source(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        s_src = await ws.folder(src, "S")
        s_dst = await ws.folder(dst, "S")
        d = await ws.file(s_src, "d.txt")
        await ws.file(s_dst, "c.txt")

        report = await moves.move_item(ws.session, s_src, ItemKind.FOLDER, dst, ws.user, {"S": "merge"})

        assert (report.moved, report.skipped, report.errors) == (1, 0, 0)
        assert await _folder_row(ws, s_src) is None
        assert not ws.disk("/src/S").exists()
        assert (await _file_row(ws, d)).folder_id == s_dst
        assert ws.disk("/dst/S/d.txt").exists()
        assert ws.disk("/dst/S/c.txt").exists()

    async def test_merge_keeps_source_when_child_skipped(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        s_src = await ws.folder(src, "S")
        s_dst = await ws.folder(dst, "S")
        c = await ws.file(s_src, "c.txt", b"mine")
        d = await ws.file(s_src, "d.txt")
        await ws.file(s_dst, "c.txt", b"theirs")

        report = await moves.move_item(ws.session, s_src, ItemKind.FOLDER, dst, ws.user, {"S": "merge"})

        assert (report.moved, report.skipped, report.errors) == (1, 1, 0)
        assert await _folder_row(ws, s_src) is not None
        assert (await _file_row(ws, c)).folder_id == s_src
        assert (await _file_row(ws, d)).folder_id == s_dst
        assert ws.disk("/src/S/c.txt").read_bytes() == b"mine"
        assert ws.disk("/dst/S/c.txt").read_bytes() == b"theirs"

    async def test_nested_merge_with_child_policies(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        s_src = await ws.folder(src, "S")
        inner_src = await ws.folder(s_src, "inner")
        s_dst = await ws.folder(dst, "S")
        inner_dst = await ws.folder(s_dst, "inner")
        x = await ws.file(inner_src, "x.txt", b"new")
        await ws.file(inner_dst, "x.txt", b"old")

        report = await moves.move_item(
            ws.session,
            s_src,
            ItemKind.FOLDER,
            dst,
            ws.user,
            {"S": "merge", "S/inner": "merge", "S/inner/x.txt": "overwrite"},
        )

        assert (report.moved, report.skipped, report.errors) == (1, 0, 0)
        assert await _folder_row(ws, s_src) is None
        assert await _folder_row(ws, inner_src) is None
        assert (await _file_row(ws, x)).folder_id == inner_dst
        assert ws.disk("/dst/S/inner/x.txt").read_bytes() == b"new"
        assert not ws.disk("/src/S").exists()


# ---------------------------------------------------------------------------
# move_items
# ---------------------------------------------------------------------------


class TestMoveItems:
    async def test_sums_reports(self, ws, moves):
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        a = await ws.file(src, "a.txt")
        b = await ws.file(src, "b.txt")
        await ws.file(dst, "b.txt")

        report = await moves.move_items(
            ws.session, [(a, ItemKind.FILE), (b, ItemKind.FILE), (ws.root_id, ItemKind.FOLDER)], dst, ws.user
        )

        assert (report.moved, report.skipped, report.errors) == (1, 1, 1)

    async def test_adapter_error_fails_only_that_item(self, ws, namespace, resolver, registry, deletion):
        engine = MoveEngine(namespace, resolver, ConnectionResetStorage(registry, resolver), deletion)
        src = await ws.folder(ws.mount_folder_id, "src")
        dst = await ws.folder(ws.mount_folder_id, "dst")
        bad = await ws.file(src, "bad.txt")
        good = await ws.file(src, "good.txt")

        report = await engine.move_items(ws.session, [(bad, ItemKind.FILE), (good, ItemKind.FILE)], dst, ws.user)

        assert (report.moved, report.errors) == (1, 1)
        assert (await _file_row(ws, bad)).folder_id == src
        assert (await _file_row(ws, good)).folder_id == dst
        assert ws.disk("/src/bad.txt").exists()
        assert ws.disk("/dst/good.txt").exists()


# ---------------------------------------------------------------------------
# rename_item
# ---------------------------------------------------------------------------


class TestRenameItem:
    async def test_rename_file(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        f = await ws.file(a, "old.txt")
        result = await moves.rename_item(ws.session, f, ItemKind.FILE, "new.txt", ws.user)
        assert result.success is True
        assert (result.old_name, result.new_name) == ("old.txt", "new.txt")
        row = await _file_row(ws, f)
        assert row.file_name == "new.txt"
        assert row.file_id == "/A/new.txt"
        assert ws.disk("/A/new.txt").exists()

    async def test_rename_folder_rewrites_files(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        b = await ws.folder(a, "B")
        f = await ws.file(b, "f.txt")
        result = await moves.rename_item(ws.session, a, ItemKind.FOLDER, "Z", ws.user)
        assert result.success is True
        assert (await _file_row(ws, f)).file_id == "/Z/B/f.txt"
        assert ws.disk("/Z/B/f.txt").exists()

    async def test_rename_conflict(self, ws, moves):
        f = await ws.file(ws.mount_folder_id, "a.txt")
        await ws.file(ws.mount_folder_id, "b.txt")
        result = await moves.rename_item(ws.session, f, ItemKind.FILE, "b.txt", ws.user)
        assert result.success is False
        assert ws.disk("/a.txt").exists()

    async def test_rename_invalid_name(self, ws, moves):
        f = await ws.file(ws.mount_folder_id, "a.txt")
        result = await moves.rename_item(ws.session, f, ItemKind.FILE, "x/y", ws.user)
        assert result.success is False

    async def test_rename_root_refused(self, ws, moves):
        result = await moves.rename_item(ws.session, ws.root_id, ItemKind.FOLDER, "x", ws.user)
        assert result.success is False

    async def test_rename_mount_folder_is_logical(self, ws, moves):
        a = await ws.folder(ws.mount_folder_id, "A")
        result = await moves.rename_item(ws.session, ws.mount_folder_id, ItemKind.FOLDER, "nas2", ws.user)
        assert result.success is True
        assert (await _folder_row(ws, ws.mount_folder_id)).name == "nas2"
        assert ws.disk("/A").is_dir()
        location = await ws.resolver.physical_path(ws.session, a, ItemKind.FOLDER, ws.user)
        assert location.remote_path == "/A"
