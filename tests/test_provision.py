import os
import stat
import tempfile
import unittest
from pathlib import Path

from hook_deployer.provision import HOOK_MARKER, HookConflictError, Provisioner
from support import RecordingSession, git_available, make_config
from hook_deployer.nginx import NginxController


class ProvisionerTests(unittest.TestCase):
    def setUp(self) -> None:
        if not git_available():
            self.skipTest("git binary not found")
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.config = make_config(Path(self.tmp.name))
        self.session = RecordingSession()
        self.nginx = NginxController(
            test_command=["nginx", "-t"],
            reload_command=["systemctl", "reload", "nginx"],
            session=self.session,
        )

    def _provisioner(self) -> Provisioner:
        return Provisioner(self.config, nginx=self.nginx, python_executable="/usr/bin/python3")

    def test_install_creates_repository_and_hook(self) -> None:
        report = self._provisioner().install()

        git_dir = self.config.repository.git_dir_path
        self.assertTrue(report.repository_created)
        self.assertTrue((git_dir / "objects").is_dir())
        self.assertTrue(self.config.repository.work_tree_path.is_dir())
        self.assertTrue(report.hook_written)

        hook = git_dir / "hooks" / "post-receive"
        content = hook.read_text(encoding="utf-8")
        self.assertTrue(content.startswith("#!/usr/bin/env bash\n"))
        self.assertIn(HOOK_MARKER, content)
        self.assertIn("exec /usr/bin/python3 -m hook_deployer hook", content)
        self.assertIn(f"export HOOK_DEPLOYER_WORK_TREE={self.config.repository.work_tree_path}", content)
        self.assertTrue(hook.stat().st_mode & stat.S_IXUSR)

        self.assertTrue(report.nginx_started)
        self.assertEqual(
            self.session.calls,
            [["systemctl", "enable", "nginx"], ["systemctl", "start", "nginx"]],
        )

    def test_install_is_idempotent(self) -> None:
        self._provisioner().install(start_nginx=False)
        report = self._provisioner().install(start_nginx=False)
        self.assertFalse(report.repository_created)
        self.assertFalse(report.hook_written)
        self.assertEqual(self.session.calls, [])

    def test_foreign_hook_requires_confirmation(self) -> None:
        hook = self.config.repository.git_dir_path / "hooks" / "post-receive"
        hook.parent.mkdir(parents=True)
        hook.write_text("#!/bin/sh\necho custom\n", encoding="utf-8")

        with self.assertRaises(HookConflictError):
            self._provisioner().install(start_nginx=False, confirm_overwrite=lambda path: False)
        self.assertIn("custom", hook.read_text(encoding="utf-8"))

        report = self._provisioner().install(start_nginx=False, confirm_overwrite=lambda path: True)
        self.assertTrue(report.hook_written)
        self.assertIn(HOOK_MARKER, hook.read_text(encoding="utf-8"))

    def test_force_overwrites_foreign_hook(self) -> None:
        hook = self.config.repository.git_dir_path / "hooks" / "post-receive"
        hook.parent.mkdir(parents=True)
        hook.write_text("#!/bin/sh\n", encoding="utf-8")

        report = self._provisioner().install(force=True, start_nginx=False)

        self.assertTrue(report.hook_written)
        self.assertTrue(os.access(hook, os.X_OK))

    def test_hook_passes_config_path(self) -> None:
        config_file = Path(self.tmp.name) / "config.json"
        provisioner = Provisioner(
            self.config,
            nginx=self.nginx,
            python_executable="/usr/bin/python3",
            config_path=str(config_file),
        )
        self.assertIn(f"--config {config_file.resolve()} hook", provisioner.render_hook())


if __name__ == "__main__":
    unittest.main()
