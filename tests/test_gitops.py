import tempfile
import unittest
from pathlib import Path

from hook_deployer.gitops import GitCommandError, GitRepositoryManager
from support import PushFixture, git_available, run_git


class GitRepositoryManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        if not git_available():
            self.skipTest("git binary not found")
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name)
        self.manager = GitRepositoryManager()

    def test_init_bare_is_idempotent(self) -> None:
        git_dir = self.root / "repo.git"
        self.assertTrue(self.manager.init_bare(git_dir, initial_branch="main"))
        self.assertTrue((git_dir / "objects").is_dir())
        self.assertFalse(self.manager.init_bare(git_dir))
        self.assertEqual(self.manager.current_branch(git_dir), "main")

    def test_checkout_forces_work_tree_to_tip(self) -> None:
        fixture = PushFixture(self.root, self.root / "repo.git")
        first = fixture.commit({"nginx_conf/nginx.conf": "v1", "old.txt": "old"})
        fixture.push()

        work_tree = self.root / "deploy"
        result = self.manager.checkout(fixture.git_dir, work_tree)
        self.assertEqual(result.commit_sha, first)
        self.assertEqual(result.branch, "main")
        self.assertEqual((work_tree / "nginx_conf/nginx.conf").read_text(encoding="utf-8"), "v1")

        # 本地修改与多余文件都会被覆盖/清除
        (work_tree / "nginx_conf/nginx.conf").write_text("local edit", encoding="utf-8")
        (work_tree / "stray.txt").write_text("stray", encoding="utf-8")
        second = fixture.commit({"nginx_conf/nginx.conf": "v2", "old.txt": None})
        fixture.push()

        result = self.manager.checkout(fixture.git_dir, work_tree, "main")
        self.assertEqual(result.commit_sha, second)
        self.assertEqual((work_tree / "nginx_conf/nginx.conf").read_text(encoding="utf-8"), "v2")
        self.assertFalse((work_tree / "old.txt").exists())
        self.assertFalse((work_tree / "stray.txt").exists())

    def test_checkout_without_clean_keeps_untracked_files(self) -> None:
        fixture = PushFixture(self.root, self.root / "repo.git")
        fixture.commit({"a.txt": "a"})
        fixture.push()
        work_tree = self.root / "deploy"
        work_tree.mkdir()
        (work_tree / "stray.txt").write_text("stray", encoding="utf-8")

        self.manager.checkout(fixture.git_dir, work_tree, clean=False)
        self.assertTrue((work_tree / "stray.txt").exists())

    def test_checkout_of_empty_repository_fails(self) -> None:
        git_dir = self.root / "repo.git"
        self.manager.init_bare(git_dir, initial_branch="main")
        with self.assertRaises(GitCommandError) as ctx:
            self.manager.checkout(git_dir, self.root / "deploy")
        self.assertNotEqual(ctx.exception.exit_code, 0)

    def test_rev_parse(self) -> None:
        fixture = PushFixture(self.root, self.root / "repo.git")
        sha = fixture.commit({"a.txt": "a"})
        fixture.push()
        self.assertEqual(self.manager.rev_parse(fixture.git_dir, "main"), sha)
        self.assertEqual(run_git(["rev-parse", "HEAD"], fixture.source), sha)


if __name__ == "__main__":
    unittest.main()
