"""
Unit tests for engine command construction.
"""

import logging
from pathlib import Path

from app.command_builder import build_command


RUNTIME = "python3"
SCRIPT = Path("/srv/engine dir/transcribe.py")
INPUT = Path("/tmp/whisper-uploads/1700000000-talk.mp3")
OUTPUT = Path("/tmp/whisper-uploads/1700000000-talk.json")


class TestBuildCommand:
    """Tests for build_command()."""

    def test_base_invocation(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT)

        assert command.argv == (
            "python3",
            str(SCRIPT),
            "--input",
            str(INPUT),
            "--output-json",
            str(OUTPUT),
        )
        assert command.runtime == "python3"
        assert command.script_path == str(SCRIPT)
        assert command.secret is None

    def test_diarize_with_token(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT, diarize=True, hf_token="hf_abc123")

        assert command.argv[-3:] == ("--diarize", "--hf-token", "hf_abc123")
        assert command.secret == "hf_abc123"

    def test_diarize_without_token_degrades(self, caplog):
        with caplog.at_level(logging.WARNING, logger="app.command_builder"):
            command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT, diarize=True)

        assert command.argv[-1] == "--diarize"
        assert "--hf-token" not in command.argv
        assert any("without HF token" in r.getMessage() for r in caplog.records)

    def test_token_ignored_without_diarization(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT, diarize=False, hf_token="hf_abc123")

        assert "--diarize" not in command.argv
        assert "hf_abc123" not in command.argv
        assert command.secret is None

    def test_hostile_filename_stays_one_argument(self):
        hostile = Path('/tmp/whisper-uploads/1-a" --hf-token "stolen; rm -rf ~.wav')

        command = build_command(RUNTIME, SCRIPT, hostile, OUTPUT)

        assert command.argv[3] == str(hostile)
        assert command.argv.count("--hf-token") == 0
        assert len(command.argv) == 6

    def test_paths_with_spaces_are_not_split(self):
        spaced = Path("/tmp/whisper uploads/1-my talk.mp3")

        command = build_command(RUNTIME, SCRIPT, spaced, OUTPUT)

        assert command.argv[1] == "/srv/engine dir/transcribe.py"
        assert command.argv[3] == "/tmp/whisper uploads/1-my talk.mp3"

    def test_argv_is_immutable_tuple(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT)

        assert isinstance(command.argv, tuple)


class TestRedaction:
    """Tests for keeping the token out of logged commands."""

    def test_redacted_masks_token(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT, diarize=True, hf_token="hf_abc123")

        rendered = command.redacted()

        assert "hf_abc123" not in rendered
        assert "--hf-token [HF_TOKEN_HIDDEN]" in rendered

    def test_repr_masks_token(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT, diarize=True, hf_token="hf_abc123")

        assert "hf_abc123" not in repr(command)

    def test_redacted_without_token_is_plain_command(self):
        command = build_command(RUNTIME, SCRIPT, INPUT, OUTPUT)

        assert command.redacted() == " ".join(command.argv)
