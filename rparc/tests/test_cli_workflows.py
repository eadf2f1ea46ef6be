from __future__ import annotations

import io
import os
import subprocess
import sys
import tempfile
import threading
import unittest
from pathlib import Path
from typing import Dict
from unittest import mock

from rparc.archive import RenpyArchive
from rparc.cli import cmd_add, cmd_extract, cmd_remove, cmd_update
from rparc.constants import CONTENT_FILE
from rparc.errors import NotFound, WritingNotSupported
from rparc.replace import replace_archive, temp_path_for
from rparc.version import FormatVersion


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "images").mkdir()
    (root / "audio").mkdir()
    files["images/bg.png"] = os.urandom(3000)
    files["images/side.png"] = os.urandom(700)
    files["audio/theme.ogg"] = b"OggS" * 256
    files["script.rpy"] = b"label start:\n    return\n"
    for rel, data in files.items():
        (root / rel).write_bytes(data)
    return files


def _read_all(path: Path) -> Dict[str, bytes]:
    got = {}
    with RenpyArchive.open(path) as arc:
        for name in arc.list():
            out = io.BytesIO()
            arc.copy_file(name, out)
            got[name] = out.getvalue()
    return got


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None):
        cmd = [sys.executable, "-m", "rparc.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parents[2]
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def make_temp_tree(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        root = Path(tmp.name)
        src = root / "game"
        src.mkdir()
        data = _build_fixture_tree(src)
        return root, src, data

    def test_add_list_extract(self):
        root, src, data = self.make_temp_tree()
        archive = root / "archive.rpa"
        self.run_cli(["add", str(archive)] + [f"{rel}={src / rel}" for rel in data])
        self.assertFalse(temp_path_for(archive).exists())

        proc = self.run_cli(["list", str(archive)])
        self.assertEqual(proc.stdout.splitlines(), sorted(data))

        out_dir = root / "out"
        self.run_cli(["extract", str(archive), "-O", str(out_dir)])
        for rel, expected in data.items():
            self.assertEqual((out_dir / rel).read_bytes(), expected)

        mem_dir = root / "mem"
        self.run_cli(["extract", str(archive), "-O", str(mem_dir), "-m", "-p", "images/*"])
        self.assertTrue((mem_dir / "images" / "bg.png").exists())
        self.assertFalse((mem_dir / "script.rpy").exists())

    def test_add_with_pattern_relative_to_cwd(self):
        root, src, data = self.make_temp_tree()
        self.run_cli(["add", "game.rpa", "-p", "images/*.png"], cwd=src)
        self.assertEqual(sorted(_read_all(src / "game.rpa")), ["images/bg.png", "images/side.png"])

    def test_info_and_write_version(self):
        root, src, data = self.make_temp_tree()
        archive = root / "v2.rpa"
        self.run_cli(["-w", "2", "add", str(archive), f"script.rpy={src / 'script.rpy'}"])
        proc = self.run_cli(["info", str(archive)])
        self.assertIn("version:  v2.0", proc.stdout)
        self.assertIn("key:      -", proc.stdout)

        self.run_cli(["-w", "3", "-k", "00c0ffee", "add", str(archive), f"audio/theme.ogg={src / 'audio' / 'theme.ogg'}"])
        proc = self.run_cli(["info", str(archive)])
        self.assertIn("version:  v3.0", proc.stdout)
        self.assertIn("key:      0xc0ffee", proc.stdout)
        self.assertEqual(_read_all(archive), {"script.rpy": data["script.rpy"], "audio/theme.ogg": data["audio/theme.ogg"]})

    def test_remove(self):
        root, src, data = self.make_temp_tree()
        archive = root / "archive.rpa"
        self.run_cli(["add", str(archive)] + [f"{rel}={src / rel}" for rel in data])

        self.run_cli(["remove", str(archive), "script.rpy"])
        self.assertNotIn("script.rpy", _read_all(archive))

        self.run_cli(["remove", str(archive), "-p", "images/*"])
        self.assertEqual(sorted(_read_all(archive)), ["audio/theme.ogg"])

        proc = self.run_cli(["remove", str(archive), "missing.txt"], expect=2)
        self.assertIn("Error:", proc.stderr)
        self.assertIn("missing.txt", proc.stderr)

    def test_remove_keep(self):
        root, src, data = self.make_temp_tree()
        archive = root / "archive.rpa"
        self.run_cli(["add", str(archive)] + [f"{rel}={src / rel}" for rel in data])
        self.run_cli(["remove", str(archive), "-p", "images/*", "--keep"])
        self.assertEqual(sorted(_read_all(archive)), ["images/bg.png", "images/side.png"])

    def test_errors_exit_2(self):
        root, src, data = self.make_temp_tree()
        bogus = root / "bogus.rpa"
        bogus.write_bytes(b"definitely not an archive\n")
        proc = self.run_cli(["list", str(bogus)], expect=2)
        self.assertIn("failed to identify archive version", proc.stderr)
        proc = self.run_cli(["list", str(root / "nope.rpa")], expect=2)
        self.assertIn("Error:", proc.stderr)


class CommandTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_update_from_relative_directory(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "game"
            src.mkdir()
            data = _build_fixture_tree(src)
            archive = tmp_path / "archive.rpa"
            cmd_add(str(archive), [f"{rel}={src / rel}" for rel in data])

            (src / "script.rpy").write_bytes(b"label start:\n    'changed'\n")
            (src / "images" / "bg.png").write_bytes(b"new bg")
            cmd_update(str(archive), ["script.rpy"], relative=str(src))
            got = _read_all(archive)
            self.assertEqual(got["script.rpy"], b"label start:\n    'changed'\n")
            self.assertEqual(got["images/bg.png"], data["images/bg.png"])

            cmd_update(str(archive), pattern="images/*", relative=str(src))
            self.assertEqual(_read_all(archive)["images/bg.png"], b"new bg")

            with self.assertRaises(NotFound):
                cmd_update(str(archive), ["nope.txt"], relative=str(src))
            with self.assertRaises(FileNotFoundError):
                cmd_update(str(archive), relative=str(tmp_path / "missing"))

        self.run_with_tmpdir(scenario)

    def test_update_everything_defaults_to_archive_directory(self):
        def scenario(tmp_path: Path):
            data = _build_fixture_tree(tmp_path)
            archive = tmp_path / "archive.rpa"
            cmd_add(str(archive), [f"{rel}={tmp_path / rel}" for rel in data])
            (tmp_path / "audio" / "theme.ogg").write_bytes(b"fresh")
            cmd_update(str(archive))
            self.assertEqual(_read_all(archive)["audio/theme.ogg"], b"fresh")

        self.run_with_tmpdir(scenario)

    def test_override_version_for_unwritable_archive(self):
        def scenario(tmp_path: Path):
            import pickle
            import zlib

            body = b"legacy"
            header = b"RPA-3.2 %016x %08x %08x\n" % (43 + len(body), 0, 0x55)
            index = zlib.compress(pickle.dumps({"old.txt": [[43 ^ 0x55, len(body) ^ 0x55]]}, protocol=2))
            archive = tmp_path / "old.rpa"
            archive.write_bytes(header + body + index)

            with self.assertRaises(WritingNotSupported):
                cmd_remove(str(archive), pattern="nothing-matches")
            self.assertEqual(archive.read_bytes(), header + body + index)
            self.assertFalse(temp_path_for(archive).exists())

            cmd_remove(str(archive), pattern="nothing-matches", override_version=True)
            with RenpyArchive.open(archive) as arc:
                self.assertIs(arc.version, FormatVersion.V3_0)
                self.assertEqual(arc.key, 0x55)
            self.assertEqual(_read_all(archive), {"old.txt": body})

        self.run_with_tmpdir(scenario)

    def test_replace_archive_cleans_up_on_failure(self):
        def scenario(tmp_path: Path):
            archive = tmp_path / "a.rpa"
            arc = RenpyArchive.new()
            arc.content.insert_raw("ok.txt", b"fine")
            replace_archive(arc, archive)
            before = archive.read_bytes()

            arc = RenpyArchive.open(archive)
            arc.content.insert_file_mapped("gone.txt", tmp_path / "gone.txt")
            self.assertEqual(arc.content["gone.txt"].kind, CONTENT_FILE)
            with self.assertRaises(FileNotFoundError):
                replace_archive(arc, archive)
            self.assertEqual(archive.read_bytes(), before)
            self.assertFalse(temp_path_for(archive).exists())

        self.run_with_tmpdir(scenario)

    def test_remove_and_update_accept_unnormalized_paths(self):
        def scenario(tmp_path: Path):
            data = _build_fixture_tree(tmp_path)
            archive = tmp_path / "archive.rpa"
            cmd_add(str(archive), [f"{rel}={tmp_path / rel}" for rel in data])

            cmd_remove(str(archive), ["images\\side.png"])
            self.assertNotIn("images/side.png", _read_all(archive))

            (tmp_path / "script.rpy").write_bytes(b"label start:\n    'again'\n")
            cmd_update(str(archive), ["./script.rpy"])
            self.assertEqual(_read_all(archive)["script.rpy"], b"label start:\n    'again'\n")

        self.run_with_tmpdir(scenario)

    def test_memory_extract_runs_archives_in_turn(self):
        calls = []

        def fake_extract(path, out_dir, files, pattern, jobs=None):
            calls.append((path, threading.current_thread() is threading.main_thread(), jobs))
            return [path]

        with mock.patch("rparc.cli.extract_archive_mapped", side_effect=fake_extract):
            count = cmd_extract(["a.rpa", "b.rpa", "c.rpa"], memory=True, jobs=3)
        self.assertEqual(count, 3)
        self.assertEqual(calls, [("a.rpa", True, 3), ("b.rpa", True, 3), ("c.rpa", True, 3)])

    def test_extract_requires_archives(self):
        with self.assertRaises(RuntimeError):
            cmd_extract([])


if __name__ == "__main__":
    unittest.main()
