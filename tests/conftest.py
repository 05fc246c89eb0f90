"""
Shared fixtures: a scriptable fake engine and services wired to it.

The fake engine honours the real engine's command line and picks its
behaviour from the FAKE_ENGINE_MODE environment variable, which the
child inherits from the test process.
"""

import sys

import pytest

from app.executable_locator import ExecutableLocator
from app.job_workspace import JobWorkspace
from app.process_runner import ProcessRunner
from app.transcription_service import TranscriptionService


TOKEN_ENV = "TEST_HF_TOKEN"

ENGINE_SOURCE = '''
import argparse
import json
import os
import sys
import time

parser = argparse.ArgumentParser()
parser.add_argument("--input", required=True)
parser.add_argument("--output-json", required=True)
parser.add_argument("--diarize", action="store_true")
parser.add_argument("--hf-token")
args = parser.parse_args()

pid_file = os.environ.get("FAKE_ENGINE_PID_FILE")
if pid_file:
    with open(pid_file, "w") as f:
        f.write(str(os.getpid()))

mode = os.environ.get("FAKE_ENGINE_MODE", "ok")

if mode == "ok":
    sys.stderr.write("loading model\\n")
    with open(args.input, "rb") as f:
        content = f.read().decode("utf-8", "replace")
    result = {
        "text": content,
        "input": args.input,
        "output": args.output_json,
        "diarize": args.diarize,
        "has_token": args.hf_token is not None,
        "argv": sys.argv[1:],
    }
    with open(args.output_json, "w", encoding="utf-8") as f:
        json.dump(result, f)
elif mode == "partial":
    with open(args.output_json, "w", encoding="utf-8") as f:
        f.write('{"segments": [{"text": "hel')
    sys.stderr.write("CUDA out of memory\\n")
    sys.exit(1)
elif mode == "fail":
    sys.stderr.write("engine rejected token %s\\n" % args.hf_token)
    sys.exit(2)
elif mode == "no_output":
    print("finished without writing")
elif mode == "garbage":
    with open(args.output_json, "w", encoding="utf-8") as f:
        f.write("this is not json")
elif mode == "sleep":
    with open(args.output_json, "w", encoding="utf-8") as f:
        f.write('{"segments": [')
    time.sleep(60)
'''


@pytest.fixture
def engine_script(tmp_path):
    """Write the fake engine to a directory with a space in its name."""
    path = tmp_path / "engine dir" / "transcribe.py"
    path.parent.mkdir()
    path.write_text(ENGINE_SOURCE, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path):
    return JobWorkspace(root=tmp_path / "tmp")


@pytest.fixture
def workspace_files(workspace):
    """Return a callable listing whatever is left in the workspace."""
    def list_files():
        if not workspace.directory.exists():
            return []
        return sorted(p.name for p in workspace.directory.iterdir())
    return list_files


@pytest.fixture
def make_service(engine_script, workspace, monkeypatch):
    """Build TranscriptionService instances that run the fake engine."""
    monkeypatch.delenv(TOKEN_ENV, raising=False)
    monkeypatch.delenv("FAKE_ENGINE_MODE", raising=False)

    def factory(timeout_seconds=20.0, max_output_bytes=1024 * 1024, locator=None, runner=None, script_path=None):
        return TranscriptionService(
            workspace=workspace,
            locator=locator or ExecutableLocator([sys.executable]),
            runner=runner or ProcessRunner(
                timeout_seconds=timeout_seconds,
                max_output_bytes=max_output_bytes,
                poll_interval=0.05
            ),
            script_path=script_path or engine_script,
            hf_token_env=TOKEN_ENV
        )

    return factory
