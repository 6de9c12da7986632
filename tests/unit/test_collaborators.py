"""
Unit tests for the command-backed collaborators.

Command templates point at the running interpreter so the real subprocess
path is exercised without maven or docker.
"""

import shlex
import sys
from pathlib import Path

import pytest

from service_pipeline.collaborators import (
    CommandBuildTool,
    CommandContainerEngine,
    CommandTestRunner,
    DirectoryReportArchiver,
    NullReportArchiver,
)
from service_pipeline.config import Settings
from service_pipeline.errors import (
    BuildError,
    ConfigurationError,
    ImageBuildError,
    PublishError,
    RegistryAuthError,
)
from service_pipeline.runner import CommandRunner
from tests.fakes import jacoco_xml, surefire_xml

PYTHON = shlex.quote(sys.executable)


def python_command(code: str) -> str:
    return f"{PYTHON} -c {shlex.quote(code)}"


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, registry=["orders"], **overrides)


class TestCommandTestRunner:
    """Tests for CommandTestRunner."""

    @pytest.mark.asyncio
    async def test_locates_reports(self, tmp_path: Path):
        """Test the coverage report path and test reports are resolved under the repo."""
        reports = tmp_path / "orders" / "target" / "surefire-reports"
        reports.mkdir(parents=True)
        (reports / "TEST-b.xml").write_text(surefire_xml(tests=1))
        (reports / "TEST-a.xml").write_text(surefire_xml(tests=1))
        (reports / "other.txt").write_text("ignored")

        settings = make_settings(test_command=python_command("print('ok')"))
        runner = CommandTestRunner(settings, CommandRunner(cwd=tmp_path))

        run = await runner.run_tests("orders")

        assert run.result.ok is True
        assert run.coverage_report == tmp_path / "orders/target/site/jacoco/jacoco.xml"
        assert [p.name for p in run.test_reports] == ["TEST-a.xml", "TEST-b.xml"]

    @pytest.mark.asyncio
    async def test_failure_is_returned(self, tmp_path: Path):
        """Test a failing test command is reported on the result, not raised."""
        settings = make_settings(test_command=python_command("import sys; sys.exit(1)"))
        runner = CommandTestRunner(settings, CommandRunner(cwd=tmp_path))

        run = await runner.run_tests("orders")

        assert run.result.ok is False
        assert run.test_reports == []

    @pytest.mark.asyncio
    async def test_service_placeholder(self, tmp_path: Path):
        """Test {service} is substituted into the command."""
        settings = make_settings(
            test_command=python_command(
                "import sys, pathlib; pathlib.Path(sys.argv[1]).mkdir()"
            )
            + " {service}-ran"
        )
        runner = CommandTestRunner(settings, CommandRunner(cwd=tmp_path))

        await runner.run_tests("orders")

        assert (tmp_path / "orders-ran").is_dir()


class TestCommandBuildTool:
    """Tests for CommandBuildTool."""

    @pytest.mark.asyncio
    async def test_returns_single_artifact(self, tmp_path: Path):
        """Test the one matching artifact is returned."""
        code = (
            "import pathlib; p = pathlib.Path('orders/target'); "
            "p.mkdir(parents=True); (p / 'orders-1.0.jar').write_bytes(b'PK')"
        )
        settings = make_settings(build_command=python_command(code))
        tool = CommandBuildTool(settings, CommandRunner(cwd=tmp_path))

        artifact = await tool.build("orders")

        assert artifact == tmp_path / "orders" / "target" / "orders-1.0.jar"

    @pytest.mark.asyncio
    async def test_command_failure_raises(self, tmp_path: Path):
        """Test a failing build command raises BuildError."""
        settings = make_settings(build_command=python_command("import sys; sys.exit(2)"))
        tool = CommandBuildTool(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(BuildError) as exc_info:
            await tool.build("orders")

        assert exc_info.value.service == "orders"
        assert "status 2" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_no_artifact_raises(self, tmp_path: Path):
        """Test a successful build without an artifact is a build failure."""
        settings = make_settings(build_command=python_command("pass"))
        tool = CommandBuildTool(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(BuildError, match="no artifact"):
            await tool.build("orders")

    @pytest.mark.asyncio
    async def test_several_artifacts_raise(self, tmp_path: Path):
        """Test an ambiguous artifact pattern is a build failure."""
        target = tmp_path / "orders" / "target"
        target.mkdir(parents=True)
        (target / "a.jar").write_bytes(b"PK")
        (target / "b.jar").write_bytes(b"PK")
        settings = make_settings(build_command=python_command("pass"))
        tool = CommandBuildTool(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(BuildError, match="expected one artifact"):
            await tool.build("orders")


class TestCommandContainerEngine:
    """Tests for CommandContainerEngine."""

    @pytest.mark.asyncio
    async def test_login_without_credentials_raises(self, tmp_path: Path):
        """Test missing credentials fail before any command runs."""
        engine = CommandContainerEngine(make_settings(), CommandRunner(cwd=tmp_path))

        with pytest.raises(RegistryAuthError, match="not configured"):
            await engine.login()

    @pytest.mark.asyncio
    async def test_login_reads_password_from_stdin(self, tmp_path: Path):
        """Test the password is piped to the login command."""
        code = "import sys, pathlib; pathlib.Path('pw').write_text(sys.stdin.read())"
        settings = make_settings(
            registry_username="ci",
            registry_password="s3cret",
            registry_login_command=python_command(code) + " {registry} {username}",
        )
        engine = CommandContainerEngine(settings, CommandRunner(cwd=tmp_path))

        await engine.login()

        assert (tmp_path / "pw").read_text() == "s3cret"

    @pytest.mark.asyncio
    async def test_login_failure_masks_password(self, tmp_path: Path):
        """Test a failed login raises without echoing the password."""
        code = "import sys; sys.stderr.write('bad password ' + sys.stdin.read()); sys.exit(1)"
        settings = make_settings(
            registry_username="ci",
            registry_password="s3cret",
            registry_login_command=python_command(code),
        )
        engine = CommandContainerEngine(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(RegistryAuthError) as exc_info:
            await engine.login()

        assert "s3cret" not in str(exc_info.value)
        assert "***" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_build_image_passes_relative_artifact(self, tmp_path: Path):
        """Test placeholders are rendered with the artifact relative to the repo."""
        code = "import sys, pathlib; pathlib.Path('args').write_text(' '.join(sys.argv[1:]))"
        settings = make_settings(image_build_command=python_command(code) + " {artifact} {image}:{tag}")
        engine = CommandContainerEngine(settings, CommandRunner(cwd=tmp_path))

        await engine.build_image(
            "orders", tmp_path / "orders" / "target" / "app.jar", "shop/orders", "abc1234"
        )

        assert (tmp_path / "args").read_text() == "orders/target/app.jar shop/orders:abc1234"

    @pytest.mark.asyncio
    async def test_build_image_failure(self, tmp_path: Path):
        """Test a failing image build raises ImageBuildError."""
        settings = make_settings(image_build_command=python_command("import sys; sys.exit(1)"))
        engine = CommandContainerEngine(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(ImageBuildError):
            await engine.build_image("orders", tmp_path / "app.jar", "orders", "t")

    @pytest.mark.asyncio
    async def test_push_failure(self, tmp_path: Path):
        """Test a failing push raises PublishError for the service."""
        settings = make_settings(image_push_command=python_command("import sys; sys.exit(1)"))
        engine = CommandContainerEngine(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(PublishError) as exc_info:
            await engine.push("orders", "shop/orders", "t")

        assert exc_info.value.service == "orders"

    @pytest.mark.asyncio
    async def test_login_template_error_is_configuration_error(self, tmp_path: Path):
        """Test a login template with an unknown placeholder fails before any command runs."""
        settings = make_settings(registry_username="ci", registry_password="s3cret")
        settings = settings.model_copy(update={"registry_login_command": "docker login {host}"})
        engine = CommandContainerEngine(settings, CommandRunner(cwd=tmp_path))

        with pytest.raises(ConfigurationError, match=r"\{host\}"):
            await engine.login()


class TestReportArchivers:
    """Tests for the report archivers."""

    def test_directory_archiver_copies_existing_files(self, tmp_path: Path):
        """Test reports land in <archive_dir>/<service>/ and missing files are skipped."""
        report = tmp_path / "jacoco.xml"
        report.write_text(jacoco_xml(1, 1))
        archive_dir = tmp_path / "archive"

        DirectoryReportArchiver(archive_dir).archive("orders", [report, tmp_path / "missing.xml"])

        assert (archive_dir / "orders" / "jacoco.xml").read_text() == report.read_text()
        assert not (archive_dir / "orders" / "missing.xml").exists()

    def test_null_archiver(self, tmp_path: Path):
        """Test the null archiver accepts reports and writes nothing."""
        NullReportArchiver().archive("orders", [tmp_path / "x.xml"])

        assert list(tmp_path.iterdir()) == []
