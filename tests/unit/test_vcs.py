"""
Unit tests for GitClient against a throwaway repository.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from service_pipeline.change_detection import detect_affected_services
from service_pipeline.errors import ChangeDetectionError
from service_pipeline.runner import CommandRunner
from service_pipeline.vcs import GitClient

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return completed.stdout.strip()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """Repository with two commits: the second touches orders/ and billing/."""
    git(tmp_path, "init", "-q", "-b", "main")
    git(tmp_path, "config", "user.email", "ci@example.com")
    git(tmp_path, "config", "user.name", "CI")
    git(tmp_path, "config", "commit.gpgsign", "false")

    for service in ("orders", "billing", "gateway"):
        (tmp_path / service).mkdir()
        (tmp_path / service / "pom.xml").write_text("<project/>")
    git(tmp_path, "add", ".")
    git(tmp_path, "commit", "-q", "-m", "initial")
    git(tmp_path, "tag", "base")

    (tmp_path / "orders" / "pom.xml").write_text("<project>v2</project>")
    (tmp_path / "billing" / "pom.xml").unlink()
    (tmp_path / "README.md").write_text("readme")
    git(tmp_path, "add", "-A")
    git(tmp_path, "commit", "-q", "-m", "change")
    return tmp_path


@pytest.fixture
def client(repo: Path) -> GitClient:
    return GitClient(CommandRunner(cwd=repo))


class TestGitClient:
    """Tests for GitClient."""

    @pytest.mark.asyncio
    async def test_changed_paths(self, client: GitClient):
        """Test edits, deletions and additions are all listed."""
        paths = await client.changed_paths("base", "HEAD")

        assert sorted(paths) == ["README.md", "billing/pom.xml", "orders/pom.xml"]

    @pytest.mark.asyncio
    async def test_unusual_path_names(self, client: GitClient, repo: Path):
        """Test paths git would quote are returned verbatim and still map to their service."""
        names = ["résumé.txt", 'say "hi".txt', "back\\slash.txt"]
        for name in names:
            (repo / "orders" / name).write_text("x")
        git(repo, "add", "-A")
        git(repo, "commit", "-q", "-m", "unusual names")

        paths = await client.changed_paths("HEAD~1", "HEAD")

        assert sorted(paths) == sorted(f"orders/{name}" for name in names)
        assert detect_affected_services(["orders", "billing"], paths) == ("orders",)

    @pytest.mark.asyncio
    async def test_no_changes(self, client: GitClient):
        """Test identical revisions give an empty list."""
        assert await client.changed_paths("HEAD", "HEAD") == []

    @pytest.mark.asyncio
    async def test_unknown_revision_raises(self, client: GitClient):
        """Test an unknown revision is a change detection error."""
        with pytest.raises(ChangeDetectionError) as exc_info:
            await client.changed_paths("no-such-rev", "HEAD")

        assert exc_info.value.base_rev == "no-such-rev"
        assert exc_info.value.head_rev == "HEAD"

    @pytest.mark.asyncio
    async def test_short_revision(self, client: GitClient, repo: Path):
        """Test the short revision matches git's own."""
        assert await client.short_revision("HEAD") == git(repo, "rev-parse", "--short", "HEAD")

    @pytest.mark.asyncio
    async def test_tags_containing(self, client: GitClient, repo: Path):
        """Test tags containing HEAD are listed."""
        assert await client.tags_containing("HEAD") == []

        git(repo, "tag", "v1.0.0")

        assert await client.tags_containing("HEAD") == ["v1.0.0"]

    @pytest.mark.asyncio
    async def test_current_branch(self, client: GitClient):
        """Test the checked out branch is reported."""
        assert await client.current_branch() == "main"

    @pytest.mark.asyncio
    async def test_outside_repository_raises(self, tmp_path: Path):
        """Test git failures surface as ChangeDetectionError."""
        outside = tmp_path / "not-a-repo"
        outside.mkdir()
        client = GitClient(CommandRunner(cwd=outside, env={"GIT_CEILING_DIRECTORIES": str(tmp_path)}))

        with pytest.raises(ChangeDetectionError):
            await client.current_branch()
