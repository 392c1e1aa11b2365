import os
import sys
from pathlib import Path
import pytest

# Ensure we can import modules from src/ before test modules are collected
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    # Prune environment to a minimal safe set
    safe_env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "HOME": str(tmp_path),
        "LANG": os.environ.get("LANG", "C"),
        "LC_ALL": os.environ.get("LC_ALL", "C"),
        "TERM": os.environ.get("TERM", "dumb"),
    }
    monkeypatch.setenv("JSHELL_TEST_SANDBOX", "1")
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path, safe_env


@pytest.fixture()
def session(sandbox):
    from ops import ShellSession
    tmp_path, safe_env = sandbox
    sess = ShellSession(inherit_env=False)
    sess.env.update(safe_env)
    yield sess
    # Do not leave background processes behind
    with open(os.devnull, "w") as devnull:
        for job in sess.jobs.list(devnull):
            job.handle.terminate()
            job.handle.wait()
            job.handle.close()


@pytest.fixture()
def make_script():
    """Create an executable shell script at a given path."""
    def _make(path: Path, body: str) -> Path:
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(0o755)
        return path
    return _make
