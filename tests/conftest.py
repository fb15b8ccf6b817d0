"""
Pytest configuration and fixtures for sitesync tests.
"""

import io
import json
import tarfile
from pathlib import Path

import pytest

from sitesync.core.config import Settings
from sitesync.trigger.auth import sign_body


WEBHOOK_SECRET = "test-webhook-secret"
OVERRIDE_KEY = "test-override-key"
REPOSITORY = "umwics/wics-site"

CONFIG_ENV_VARS = [
    "WEBHOOK_SECRET",
    "OVERRIDE_KEY",
    "SSH_KEY_PATH",
    "SOURCE_REPOSITORY",
    "PUBLISH_TARGET",
    "REPO_PATH",
    "FETCH_STRATEGY",
    "DISPATCH_BACKEND",
    "WORKER_FUNCTION_NAME",
]


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    """Keep the developer's environment out of Settings in every test."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def ssh_key(tmp_path: Path) -> Path:
    key = tmp_path / "id_ed25519"
    key.write_text("not a real key\n")
    key.chmod(0o600)
    return key


@pytest.fixture
def settings(tmp_path: Path, ssh_key: Path) -> Settings:
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    return Settings(
        _env_file=None,
        webhook_secret=WEBHOOK_SECRET,
        override_key=OVERRIDE_KEY,
        ssh_key_path=str(ssh_key),
        source_repository=REPOSITORY,
        publish_target=str(tmp_path / "remote"),
        work_dir=str(work_dir),
        install_command="",
        log_format="console",
        metrics_enabled=False,
    )


def push_body(ref: str = "refs/heads/master", default_branch: str = "master", **extra) -> bytes:
    payload = {"ref": ref, "repository": {"default_branch": default_branch}}
    payload.update(extra)
    return json.dumps(payload).encode("utf-8")


def signed(body: bytes, algorithm: str = "sha1") -> str:
    return sign_body(WEBHOOK_SECRET, body, algorithm)


def make_tarball(files: dict, top: str = "wics-site-master") -> bytes:
    """Build a gzipped tarball the way GitHub lays out branch archives."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        if top:
            info = tarfile.TarInfo(top)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tf.addfile(info)
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{top}/{name}" if top else name)
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()
