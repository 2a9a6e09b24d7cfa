import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from skilldeck.errors import (
    CloneFailedError,
    GitCommandError,
    GitNotInstalledError,
    HashResolutionError,
    InvalidRepoURLError,
)
from skilldeck.git import GitClient, github_web_url, normalize_repo_url

from fakes import write_skill


def _proc(returncode: int = 0, stdout: str = "", stderr: str = ""):
    return SimpleNamespace(returncode=returncode, stdout=stdout, stderr=stderr)


class TestNormalizeRepoURL(unittest.TestCase):
    def test_owner_repo(self) -> None:
        self.assertEqual(normalize_repo_url("acme/skills"), ("https://github.com/acme/skills.git", "acme/skills"))

    def test_owner_repo_git_suffix_and_whitespace(self) -> None:
        self.assertEqual(
            normalize_repo_url("  acme/skills.git \n"),
            ("https://github.com/acme/skills.git", "acme/skills"),
        )

    def test_https_url(self) -> None:
        self.assertEqual(
            normalize_repo_url("https://github.com/acme/skills"),
            ("https://github.com/acme/skills.git", "acme/skills"),
        )
        self.assertEqual(
            normalize_repo_url("https://github.com/acme/skills.git"),
            ("https://github.com/acme/skills.git", "acme/skills"),
        )
        self.assertEqual(
            normalize_repo_url("https://github.com/acme/skills/"),
            ("https://github.com/acme/skills.git", "acme/skills"),
        )

    def test_invalid(self) -> None:
        for value in ("", "   ", "justarepo", "a/b/c", "/repo", "owner/", "owner/.git"):
            with self.subTest(value=value):
                with self.assertRaises(InvalidRepoURLError):
                    normalize_repo_url(value)

    def test_invalid_never_runs_git(self) -> None:
        with patch("skilldeck.git.subprocess.run") as run:
            with self.assertRaises(InvalidRepoURLError):
                normalize_repo_url("nope")
        run.assert_not_called()

    def test_github_web_url(self) -> None:
        self.assertEqual(github_web_url("https://github.com/acme/skills.git"), "https://github.com/acme/skills")
        self.assertIsNone(github_web_url("https://gitlab.com/acme/skills.git"))


class TestGitClientSubprocess(unittest.TestCase):
    def setUp(self) -> None:
        self.git = GitClient()
        self._which = patch("skilldeck.git.shutil.which", return_value="/usr/bin/git")
        self._which.start()

    def tearDown(self) -> None:
        self._which.stop()

    def test_binary_missing(self) -> None:
        with (
            patch("skilldeck.git.shutil.which", return_value=None),
            patch("skilldeck.git.os.access", return_value=False),
        ):
            git = GitClient()
            self.assertFalse(git.is_available())
            with self.assertRaises(GitNotInstalledError):
                git.run(["status"])

    def test_binary_vanishes_between_lookup_and_run(self) -> None:
        with patch("skilldeck.git.subprocess.run", side_effect=FileNotFoundError("git")):
            with self.assertRaises(GitNotInstalledError):
                self.git.run(["status"])

    def test_failure_carries_stderr_then_stdout(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(128, stderr="fatal: bad\n")):
            with self.assertRaises(GitCommandError) as ctx:
                self.git.run(["rev-parse", "HEAD"])
        self.assertEqual(ctx.exception.output, "fatal: bad")
        self.assertEqual(ctx.exception.args_list, ["rev-parse", "HEAD"])

        with patch("skilldeck.git.subprocess.run", return_value=_proc(1, stdout="only stdout")):
            with self.assertRaises(GitCommandError) as ctx:
                self.git.run(["log"])
        self.assertEqual(ctx.exception.output, "only stdout")

    def test_run_disables_prompts(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(0, stdout="ok")) as run:
            self.assertEqual(self.git.run(["status"], cwd=Path("/tmp")), "ok")
        self.assertEqual(run.call_args.args[0], ["/usr/bin/git", "status"])
        self.assertEqual(run.call_args.kwargs["env"]["GIT_TERMINAL_PROMPT"], "0")
        self.assertEqual(run.call_args.kwargs["cwd"], "/tmp")

    def test_shallow_clone_args_and_cleanup_on_failure(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(128, stderr="not found")) as run:
            with self.assertRaises(CloneFailedError) as ctx:
                self.git.clone("https://github.com/acme/x.git", shallow=True)
        args = run.call_args.args[0]
        self.assertEqual(args[1:5], ["clone", "--depth", "1", "https://github.com/acme/x.git"])
        self.assertFalse(Path(args[5]).exists())
        self.assertIn("Failed to clone repository: not found", str(ctx.exception))

    def test_stalled_clone_times_out_and_is_cleaned_up(self) -> None:
        git = GitClient(timeout_s=5.0)
        stalled = subprocess.TimeoutExpired(["git", "clone"], 5.0)
        with patch("skilldeck.git.subprocess.run", side_effect=stalled) as run:
            with self.assertRaises(CloneFailedError):
                git.clone("https://github.com/acme/x.git", shallow=True)
        self.assertEqual(run.call_args.kwargs["timeout"], 5.0)
        self.assertFalse(Path(run.call_args.args[0][-1]).exists())

    def test_full_clone_has_no_depth(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(0)) as run:
            repo = self.git.clone("https://github.com/acme/x.git", shallow=False)
        try:
            self.assertNotIn("--depth", run.call_args.args[0])
            self.assertTrue(repo.is_dir())
        finally:
            self.git.cleanup(repo)
        self.assertFalse(repo.exists())

    def test_cloned_context_always_cleans_up(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(0)):
            with self.assertRaises(RuntimeError):
                with self.git.cloned("https://github.com/acme/x.git", shallow=True) as repo:
                    self.assertTrue(repo.is_dir())
                    raise RuntimeError("boom")
        self.assertFalse(repo.exists())

    def test_hashes(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(0, stdout="abc123\n")) as run:
            self.assertEqual(self.git.tree_hash(Path("/r"), "skills/x"), "abc123")
            self.assertEqual(run.call_args.args[0][1:], ["rev-parse", "HEAD:skills/x"])
            self.assertEqual(self.git.commit_hash(Path("/r")), "abc123")

    def test_empty_hash_output(self) -> None:
        with patch("skilldeck.git.subprocess.run", return_value=_proc(0, stdout="\n")):
            with self.assertRaises(HashResolutionError):
                self.git.tree_hash(Path("/r"), "x")
            with self.assertRaises(HashResolutionError):
                self.git.commit_hash(Path("/r"))


class TestFindCommitForTreeHash(unittest.TestCase):
    def test_third_of_five_commits_matches(self) -> None:
        commits = [f"{i}" * 40 for i in range(1, 6)]
        trees = {commits[0]: "t1", commits[1]: "t2", commits[2]: "target", commits[3]: "target", commits[4]: "t5"}
        calls: list[list[str]] = []

        def fake_run(args, *, cwd=None):
            calls.append(list(args))
            if args[0] == "log":
                self.assertEqual(args, ["log", "--format=%H", "--", "skills/x"])
                return "\n".join(commits) + "\n"
            commit = args[1].split(":")[0]
            return trees[commit] + "\n"

        git = GitClient()
        with patch.object(git, "run", side_effect=fake_run):
            found = git.find_commit_for_tree_hash("target", "skills/x", Path("/r"))
        self.assertEqual(found, commits[2])
        # log + three rev-parse calls; stops at the first match.
        self.assertEqual(len(calls), 4)

    def test_skips_commits_without_the_path(self) -> None:
        def fake_run(args, *, cwd=None):
            if args[0] == "log":
                return "aaa\nbbb\n"
            if args[1].startswith("aaa"):
                raise GitCommandError(args, "fatal: path does not exist")
            return "target\n"

        git = GitClient()
        with patch.object(git, "run", side_effect=fake_run):
            self.assertEqual(git.find_commit_for_tree_hash("target", "x", Path("/r")), "bbb")

    def test_no_match(self) -> None:
        git = GitClient()
        with patch.object(git, "run", side_effect=lambda args, cwd=None: "c1\n" if args[0] == "log" else "other\n"):
            self.assertIsNone(git.find_commit_for_tree_hash("target", "x", Path("/r")))

    def test_repository_root_uses_dot_pathspec(self) -> None:
        seen: list[list[str]] = []

        def fake_run(args, *, cwd=None):
            seen.append(list(args))
            return "c1\n" if args[0] == "log" else "target\n"

        git = GitClient()
        with patch.object(git, "run", side_effect=fake_run):
            self.assertEqual(git.find_commit_for_tree_hash("target", "", Path("/r")), "c1")
        self.assertEqual(seen[0][-1], ".")
        self.assertEqual(seen[1], ["rev-parse", "c1:"])


class TestScanSkillsInRepo(unittest.TestCase):
    def test_hidden_dirs_searched_but_not_git(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            repo = Path(td)
            write_skill(repo / ".claude" / "skills" / "my-skill")
            write_skill(repo / "skills" / "b-skill")
            (repo / ".git").mkdir()
            (repo / ".git" / "SKILL.md").write_text("---\nname: git\n---\n", encoding="utf-8")
            broken = repo / "broken"
            broken.mkdir()
            (broken / "SKILL.md").write_text("nope", encoding="utf-8")

            found = GitClient().scan_skills_in_repo(repo)

        self.assertEqual([s.id for s in found], ["b-skill", "broken", "my-skill"])
        by_id = {s.id: s for s in found}
        self.assertEqual(by_id["my-skill"].folder_path, ".claude/skills/my-skill")
        self.assertEqual(by_id["my-skill"].skill_md_path, ".claude/skills/my-skill/SKILL.md")
        self.assertEqual(by_id["broken"].manifest.name, "broken")
        self.assertNotIn(".git", [s.folder_path for s in found])

    def test_root_level_skill(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            repo = Path(td) / "single-skill"
            write_skill(repo, name="single")
            found = GitClient().scan_skills_in_repo(repo)
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].id, "single-skill")
        self.assertEqual(found[0].folder_path, "")
        self.assertEqual(found[0].skill_md_path, "SKILL.md")


def _git(cwd: Path, *args: str) -> str:
    return subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


@unittest.skipUnless(shutil.which("git"), "git not installed")
class TestGitClientRealRepository(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.origin = Path(os.path.realpath(self._td.name)) / "origin"
        self.origin.mkdir()
        _git(self.origin, "init", "-q")
        self.tree_hashes: list[str] = []
        self.commits: list[str] = []
        for i in range(3):
            write_skill(self.origin / "skills" / "demo", body=f"revision {i}\n")
            _git(self.origin, "add", "-A")
            _git(self.origin, "commit", "-q", "-m", f"rev {i}")
            self.commits.append(_git(self.origin, "rev-parse", "HEAD"))
            self.tree_hashes.append(_git(self.origin, "rev-parse", "HEAD:skills/demo"))
        self.url = self.origin.as_uri()
        self.git = GitClient()

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_clone_hash_and_backfill(self) -> None:
        with self.git.cloned(self.url, shallow=False) as repo:
            self.assertEqual(self.git.commit_hash(repo), self.commits[-1])
            self.assertEqual(self.git.tree_hash(repo, "skills/demo"), self.tree_hashes[-1])
            found = self.git.find_commit_for_tree_hash(self.tree_hashes[0], "skills/demo", repo)
            self.assertEqual(found, self.commits[0])
            self.assertEqual([s.id for s in self.git.scan_skills_in_repo(repo)], ["demo"])

    def test_shallow_clone(self) -> None:
        with self.git.cloned(self.url, shallow=True) as repo:
            self.assertEqual(self.git.tree_hash(repo, "skills/demo"), self.tree_hashes[-1])

    def test_missing_path(self) -> None:
        with self.git.cloned(self.url, shallow=True) as repo:
            with self.assertRaises(GitCommandError):
                self.git.tree_hash(repo, "skills/nope")

    def test_clone_failure(self) -> None:
        with self.assertRaises(CloneFailedError):
            self.git.clone((self.origin.parent / "missing").as_uri(), shallow=True)


if __name__ == "__main__":
    unittest.main()
