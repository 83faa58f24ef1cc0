"""Subprocess runner for ansible-playbook."""

from __future__ import annotations

import json
import logging
import os
import shlex
import signal
import subprocess
from contextlib import suppress
from pathlib import Path
from typing import Protocol

from .results import PlaybookResults, ResultParseError, parse_results_stream

logger = logging.getLogger(__name__)

# Target hosts are provisioned ad hoc, so their keys are never pinned.
SSH_COMMON_ARGS = "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"

# Documented ansible-playbook exit codes.
ANSIBLE_EXIT_CODES: dict[int, str] = {
    1: "error",
    2: "one or more hosts failed",
    3: "one or more hosts were unreachable",
    4: "parser error",
    5: "bad or incomplete options",
    99: "user interrupted execution",
    250: "unexpected error",
}

STDERR_TAIL_CHARS = 2000


class PlaybookExecutionError(RuntimeError):
    """A playbook run did not produce a successful result."""


class PlaybookTimeoutError(PlaybookExecutionError):
    pass


class PlaybookOutputError(PlaybookExecutionError):
    pass


class PlaybookRunner(Protocol):
    """Interface for anything that can execute a materialized playbook."""

    def run(
        self, playbook_path: Path, inventory_path: Path, timeout_s: float
    ) -> PlaybookResults: ...


class AnsiblePlaybookRunner:
    """Run ansible-playbook with the JSON stdout callback and a hard timeout."""

    def __init__(
        self,
        *,
        binary: str = "ansible-playbook",
        ssh_private_key_file: str = "/root/.ssh/id_rsa",
        ssh_user: str = "auser",
        ssh_port: int = 8513,
    ) -> None:
        self.binary = binary
        self.ssh_private_key_file = ssh_private_key_file
        self.ssh_user = ssh_user
        self.ssh_port = ssh_port

    def build_command(self, playbook_path: Path, inventory_path: Path) -> list[str]:
        extra_vars = {
            "ansible_ssh_private_key_file": self.ssh_private_key_file,
            "ansible_user": self.ssh_user,
            "ansible_port": self.ssh_port,
        }
        return [
            self.binary,
            "--extra-vars",
            json.dumps(extra_vars),
            "--inventory",
            str(inventory_path),
            "--ssh-common-args",
            SSH_COMMON_ARGS,
            "--user",
            self.ssh_user,
            str(playbook_path),
        ]

    def build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["ANSIBLE_STDOUT_CALLBACK"] = "json"
        env["ANSIBLE_HOST_KEY_CHECKING"] = "False"
        return env

    def run(self, playbook_path: Path, inventory_path: Path, timeout_s: float) -> PlaybookResults:
        argv = self.build_command(playbook_path, inventory_path)
        logger.info("playbook_run event=start command=%s timeout_s=%s", shlex.join(argv), timeout_s)
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.build_env(),
                text=True,
                start_new_session=True,
            )
        except OSError as exc:
            raise PlaybookExecutionError(f"Failed to start {self.binary}: {exc}") from exc

        try:
            stdout, stderr = process.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired as exc:
            _terminate_process_group(process)
            raise PlaybookTimeoutError(
                f"{self.binary} timed out after {timeout_s:g}s and was killed"
            ) from exc

        logger.info(
            "playbook_run event=exited returncode=%s stdout_bytes=%d stderr_bytes=%d",
            process.returncode,
            len(stdout),
            len(stderr),
        )
        if process.returncode != 0:
            raise PlaybookExecutionError(
                _describe_failure(self.binary, process.returncode, stdout, stderr)
            )
        try:
            return parse_results_stream(stdout)
        except ResultParseError as exc:
            raise PlaybookOutputError(str(exc)) from exc


def _describe_failure(binary: str, returncode: int, stdout: str, stderr: str) -> str:
    if returncode < 0:
        meaning = f"terminated by signal {-returncode}"
    else:
        meaning = ANSIBLE_EXIT_CODES.get(returncode, "unknown error")
    parts = [f"{binary} exited with code {returncode} ({meaning})"]

    # Failed hosts still produce a full JSON report; surface what went wrong.
    try:
        results = parse_results_stream(stdout)
    except ResultParseError:
        results = None
    if results is not None:
        for outcome in results.host_outcomes():
            if outcome.state in {"failed", "unreachable"}:
                detail = outcome.result.msg or outcome.result.stderr or outcome.state
                parts.append(f"{outcome.host} [{outcome.task}] {outcome.state}: {detail}")

    stderr_text = stderr.strip()
    if stderr_text:
        parts.append(stderr_text[-STDERR_TAIL_CHARS:])
    return "\n".join(parts)


def _terminate_process_group(process: subprocess.Popen[str]) -> None:
    """Stop the whole process group; ansible forks one worker per host."""
    with suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGTERM)
    with suppress(subprocess.TimeoutExpired):
        process.wait(timeout=2)
    with suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)
    process.wait()
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()
