# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for stackvault tests.

Provides a recording command runner (no Docker needed), a scripted
restore operator, a stack directory and backup-root builders.
"""

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Generator, List, Sequence

import pytest

from stackvault.config import StackConfig
from stackvault.logs import configure_logging
from stackvault.runner import CommandResult


@dataclass
class Call:
    """One recorded runner invocation."""

    argv: tuple
    cwd: Path | None = None
    env: Dict[str, str] | None = None
    stdin_path: Path | None = None
    stdout_path: Path | None = None


def has(*words: str) -> Callable[[tuple], bool]:
    """Predicate: argv contains all words."""
    return lambda argv: all(word in argv for word in words)


def mount_source(argv: tuple, mount: str) -> Path:
    """Host side of a "-v host:mount[:ro]" argument."""
    for arg in argv:
        host, sep, rest = arg.partition(f":{mount}")
        if sep and rest in ("", ":ro"):
            return Path(host)
    raise AssertionError(f"no mount for {mount} in {argv}")


class FakeRunner:
    """
    Records every command and answers with scripted results.

    Rules added later take precedence. Without a matching rule every
    command succeeds with empty output, except "docker compose config
    --services", which lists self.services.
    """

    def __init__(self, services: Sequence[str] = ("db", "minio")):
        self.calls: List[Call] = []
        self.services = list(services)
        self._rules: list = []

    mount = staticmethod(mount_source)

    def on(self, predicate, result=None, handler=None) -> None:
        self._rules.insert(0, (predicate, result, handler))

    def fail(self, *words: str, exit_code: int = 1, stderr: str = "boom") -> None:
        self.on(has(*words), handler=lambda call: CommandResult(call.argv, exit_code, "", stderr))

    def reply(self, *words: str, stdout: str = "") -> None:
        self.on(has(*words), handler=lambda call: CommandResult(call.argv, 0, stdout, ""))

    async def __call__(
        self,
        argv,
        *,
        cwd=None,
        env=None,
        stdin_path=None,
        stdout_path=None,
    ) -> CommandResult:
        call = Call(tuple(str(a) for a in argv), cwd, env, stdin_path, stdout_path)
        self.calls.append(call)

        for predicate, result, handler in self._rules:
            if predicate(call.argv):
                if handler is not None:
                    return handler(call)
                return CommandResult(call.argv, result.exit_code, result.stdout, result.stderr)

        if call.argv[:4] == ("docker", "compose", "config", "--services"):
            return CommandResult(call.argv, 0, "\n".join(self.services) + "\n")
        return CommandResult(call.argv, 0)

    def find(self, *words: str) -> List[Call]:
        return [call for call in self.calls if has(*words)(call.argv)]

    def index(self, *words: str) -> int:
        """Position of the first call containing words, -1 if none."""
        for i, call in enumerate(self.calls):
            if has(*words)(call.argv):
                return i
        return -1

    def called(self, *words: str) -> bool:
        return self.index(*words) >= 0

    @property
    def stopped_stack(self) -> bool:
        return any(call.argv[:3] == ("docker", "compose", "down") for call in self.calls)


class FakeOperator:
    """Operator answering from preset values."""

    def __init__(self, phrase: str | None = "RESTORE NOW", accept_mismatch: bool = False):
        self.phrase = phrase
        self.accept_mismatch = accept_mismatch
        self.plans: list = []
        self.mismatch_reports: list = []

    async def confirm(self, plan):
        self.plans.append(plan)
        return self.phrase

    async def accept_checksum_mismatch(self, report):
        self.mismatch_reports.append(report)
        return self.accept_mismatch


@pytest.fixture(autouse=True)
def _logging():
    configure_logging(verbose=True)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def stack_dir(temp_dir: Path) -> Path:
    """A prepared stack checkout with .env, compose file and .git."""
    path = temp_dir / "QFieldCloud"
    path.mkdir()
    (path / ".git").mkdir()
    (path / "docker-compose.yml").write_text("services:\n  db: {}\n  minio: {}\n")
    (path / ".env").write_text(
        "COMPOSE_PROJECT_NAME=qfieldcloud\n"
        "POSTGRES_USER=qfc\n"
        "POSTGRES_DB=qfieldcloud_db\n"
        "GEODB_USER=geo\n"
        "GEODB_DB=geodb\n"
        "MINIO_ROOT_USER=minioadmin\n"
        "MINIO_ROOT_PASSWORD=secret/pass\n"
    )
    certs = path / "conf" / "nginx" / "certs"
    certs.mkdir(parents=True)
    (certs / "cert.pem").write_text("CERT\n")
    return path


@pytest.fixture
def test_config(temp_dir: Path, stack_dir: Path) -> StackConfig:
    """Create a test configuration with fast polling."""
    return StackConfig(
        stack_dir=stack_dir,
        project_name="qfieldcloud",
        postgres_user="qfc",
        postgres_db="qfieldcloud_db",
        geodb_user="geo",
        geodb_db="geodb",
        minio_root_user="minioadmin",
        minio_root_password="secret/pass",
        backup_host_dir=temp_dir / "backups",
        required_space_gb=0,
        restore_log_dir=temp_dir / "logs",
        poll_interval=0.01,
        ready_timeout=0.05,
        restart_timeout=0.05,
        settle_seconds=0,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def operator() -> FakeOperator:
    return FakeOperator()


@pytest.fixture
def make_backup(temp_dir: Path) -> Callable[..., Path]:
    """
    Build a backup root on disk.

    make_backup(database="dump"|"volume"|None, objects="mirror"|"volume"|None,
                geo=False, name=...)
    """

    def _make(
        database: str | None = "dump",
        objects: str | None = "mirror",
        geo: bool = False,
        name: str = "2025-10-14_02-00-00_incremental_hot",
    ) -> Path:
        root = temp_dir / "restore_source" / name
        root.mkdir(parents=True)
        (root / "backup.log").write_text(
            "[2025-10-14 02:00:00] backup_started\n"
            "\n=== GIT COMMIT INFORMATION ===\n"
            "commit 9f1c2ab7d3e4\n"
            "Author: Ops <ops@example.org>\n"
            "\n=== GIT REMOTE INFORMATION ===\n"
            "origin\thttps://github.com/opengisch/QFieldCloud.git (fetch)\n"
            "origin\thttps://github.com/opengisch/QFieldCloud.git (push)\n"
        )
        config_dir = root / "config"
        config_dir.mkdir()
        (config_dir / ".env").write_text("POSTGRES_USER=qfc\n")

        if database == "dump":
            (root / "db_dump.sqlc").write_bytes(b"PGDMP main")
            if geo:
                (root / "geodb_dump.sqlc").write_bytes(b"PGDMP geo")
        elif database == "volume":
            (root / "db_volumes" / "postgres_data").mkdir(parents=True)
            (root / "db_volumes" / "postgres_data" / "PG_VERSION").write_text("13\n")
            if geo:
                (root / "db_volumes" / "geodb_data").mkdir(parents=True)
                (root / "db_volumes" / "geodb_data" / "PG_VERSION").write_text("13\n")

        if objects == "mirror":
            for directory in ("minio_project_files", "minio_storage"):
                (root / directory).mkdir()
                (root / directory / "object.bin").write_bytes(b"data")
            (root / "minio_bucket_list.txt").write_text(
                "[2025-10-14 02:00:01 UTC]     4B STANDARD qfieldcloud-project-files/p1/object.bin\n"
                "[2025-10-14 02:00:01 UTC]     4B STANDARD qfieldcloud-storage/s1/object.bin\n"
            )
        elif objects == "volume":
            for index in (1, 2):
                data = root / "minio_volumes" / f"data{index}"
                data.mkdir(parents=True)
                (data / "xl.meta").write_bytes(b"meta")

        return root

    return _make
