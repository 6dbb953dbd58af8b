"""Sandbox profiles, backends and process spawning.

Profiles are a small closed set. Each names the paths a command may read and
write, whether it may reach the network and whether it may fork further
processes. A profile is always resolved before anything is spawned, even
with the unconfined backend, so every result records which profile it ran
under.

Backends:

- ``seatbelt``: macOS ``sandbox-exec`` with a generated deny-by-default profile.
- ``bwrap``: Linux bubblewrap with every namespace unshared.
- ``none``: no isolation. Must be chosen explicitly; logs a warning per spawn.
- ``auto``: picks seatbelt or bwrap for the platform, or fails.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from agentgate.core import ExecutionResult
from agentgate.errors import ExecutionTimeout, SandboxFailure, SpawnError, UnknownProfile

logger = logging.getLogger(__name__)

PROFILE_NAMES = ("minimal", "read_only", "development")
BACKEND_NAMES = ("auto", "seatbelt", "bwrap", "none")

DEFAULT_PROFILE = "development"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_OUTPUT_CHARS = 20_000

SHELL = "/bin/sh"

SYSTEM_READ_PATHS = (
    "/bin",
    "/sbin",
    "/usr",
    "/lib",
    "/lib64",
    "/etc",
    "/opt/homebrew",
    "/System",
    "/Library",
    "/private/etc",
    "/private/var/db",
)

_FAILURE_PREFIXES = ("bwrap:", "sandbox-exec:")


@dataclass
class SandboxProfile:
    """Filesystem and process scope for one spawned command."""

    name: str
    read_paths: list[Path] = field(default_factory=list)
    write_paths: list[Path] = field(default_factory=list)
    allow_network: bool = False
    allow_subprocesses: bool = False

    def describe(self) -> str:
        reads = ", ".join(str(p) for p in self.read_paths) or "(none)"
        writes = ", ".join(str(p) for p in self.write_paths) or "(none)"
        return (
            f"Profile '{self.name}'\n"
            f"  read:    {reads}\n"
            f"  write:   {writes}\n"
            f"  network: {'yes' if self.allow_network else 'no'}\n"
            f"  fork:    {'yes' if self.allow_subprocesses else 'no'}"
        )


def normalize_profile_name(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def builtin_profile(name: str, workspace: Path) -> SandboxProfile:
    """Build one of the predefined profiles for a workspace.

    Raises:
        UnknownProfile: If the name is not one of PROFILE_NAMES.
    """
    key = normalize_profile_name(name)
    system = [Path(p) for p in SYSTEM_READ_PATHS]
    workspace = workspace.resolve()
    temp_dir = Path(tempfile.gettempdir()).resolve()

    if key == "minimal":
        return SandboxProfile(name=key, read_paths=system)
    if key == "read_only":
        return SandboxProfile(name=key, read_paths=system + [workspace], allow_subprocesses=True)
    if key == "development":
        return SandboxProfile(
            name=key,
            read_paths=system + [workspace],
            write_paths=[workspace, temp_dir],
            allow_subprocesses=True,
        )
    raise UnknownProfile(f"Unknown sandbox profile '{name}'. Available: {', '.join(PROFILE_NAMES)}")


class SandboxBackend:
    """Turns a profile into the argv prefix that confines a command."""

    name = "base"
    confined = True

    def available(self) -> bool:
        raise NotImplementedError

    def prefix(self, profile: SandboxProfile, workspace: Path) -> list[str]:
        raise NotImplementedError


class SeatbeltBackend(SandboxBackend):
    name = "seatbelt"

    def available(self) -> bool:
        return sys.platform == "darwin" and shutil.which("sandbox-exec") is not None

    def prefix(self, profile: SandboxProfile, workspace: Path) -> list[str]:
        return ["sandbox-exec", "-p", self.render(profile)]

    def render(self, profile: SandboxProfile) -> str:
        """Generate the Seatbelt profile text."""
        rules = [
            "(version 1)",
            "(deny default)",
            "(allow signal (target self))",
            "(allow sysctl-read)",
            "(allow file-read-metadata)",
            "(allow process-exec)",
        ]
        if profile.allow_subprocesses:
            rules.append("(allow process-fork)")
        if profile.allow_network:
            rules.append("(allow network-outbound)")
            rules.append("(allow system-socket)")
        rules.append('(allow file-read* (literal "/dev/null") (literal "/dev/urandom"))')
        rules.append('(allow file-write* (literal "/dev/null"))')
        for path in profile.read_paths:
            rules.append(f'(allow file-read* (subpath "{_quote(path)}"))')
        for path in profile.write_paths:
            rules.append(f'(allow file-read* file-write* (subpath "{_quote(path)}"))')
        return "\n".join(rules) + "\n"


def _quote(path: Path) -> str:
    return str(path).replace("\\", "\\\\").replace('"', '\\"')


class BwrapBackend(SandboxBackend):
    name = "bwrap"

    def available(self) -> bool:
        return sys.platform.startswith("linux") and shutil.which("bwrap") is not None

    def prefix(self, profile: SandboxProfile, workspace: Path) -> list[str]:
        argv = ["bwrap", "--die-with-parent", "--unshare-all"]
        if profile.allow_network:
            argv.append("--share-net")
        argv += ["--proc", "/proc", "--dev", "/dev"]
        for path in profile.read_paths:
            argv += ["--ro-bind-try", str(path), str(path)]
        # Later binds shadow earlier ones, so writable paths go last.
        for path in profile.write_paths:
            argv += ["--bind-try", str(path), str(path)]
        argv += ["--chdir", str(workspace.resolve())]
        return argv


class UnconfinedBackend(SandboxBackend):
    name = "none"
    confined = False

    def available(self) -> bool:
        return True

    def prefix(self, profile: SandboxProfile, workspace: Path) -> list[str]:
        return []


BACKENDS: dict[str, type[SandboxBackend]] = {
    "seatbelt": SeatbeltBackend,
    "bwrap": BwrapBackend,
    "none": UnconfinedBackend,
}


def resolve_backend(name: str) -> SandboxBackend:
    """Instantiate a backend by name.

    Raises:
        SandboxFailure: If the backend is unknown or not usable on this host.
    """
    if name == "auto":
        for candidate in (SeatbeltBackend(), BwrapBackend()):
            if candidate.available():
                return candidate
        raise SandboxFailure(
            "No sandbox backend available (need sandbox-exec on macOS or bwrap on Linux). "
            "Set sandbox.backend to 'none' to run unconfined."
        )
    backend_cls = BACKENDS.get(name)
    if backend_cls is None:
        raise SandboxFailure(f"Unknown sandbox backend '{name}'. Available: {', '.join(BACKEND_NAMES)}")
    backend = backend_cls()
    if not backend.available():
        raise SandboxFailure(f"Sandbox backend '{name}' is not available on this host")
    return backend


@dataclass
class SandboxInvocation:
    """A resolved profile bound to a backend, ready to wrap commands."""

    profile: SandboxProfile
    backend: SandboxBackend
    workspace: Path

    def argv(self, command: str) -> list[str]:
        return self.backend.prefix(self.profile, self.workspace) + [SHELL, "-c", command]


class SandboxSelector:
    """Resolves profile names to invocations.

    The backend is resolved lazily so an unusable backend only fails the
    commands that need it.
    """

    def __init__(self, workspace: Path | str, backend: str = "auto", profile: str = DEFAULT_PROFILE):
        self.workspace = Path(workspace).resolve()
        self.backend_name = backend
        self.profile_name = normalize_profile_name(profile)
        if self.profile_name not in PROFILE_NAMES:
            raise UnknownProfile(f"Unknown sandbox profile '{profile}'. Available: {', '.join(PROFILE_NAMES)}")
        self._backend: SandboxBackend | None = None

    def set_profile(self, name: str) -> SandboxProfile:
        """Switch the active profile.

        Raises:
            UnknownProfile: If the name is not a built-in profile.
        """
        profile = builtin_profile(name, self.workspace)
        self.profile_name = profile.name
        logger.info("sandbox profile set name=%s", profile.name)
        return profile

    def select(self, name: str | None = None) -> SandboxInvocation:
        """Resolve a profile (the active one by default) to an invocation.

        Raises:
            UnknownProfile: If the name is not a built-in profile.
            SandboxFailure: If the configured backend is unusable.
        """
        profile = builtin_profile(name or self.profile_name, self.workspace)
        if self._backend is None:
            self._backend = resolve_backend(self.backend_name)
            logger.info("sandbox backend resolved name=%s", self._backend.name)
        return SandboxInvocation(profile=profile, backend=self._backend, workspace=self.workspace)

    def describe(self) -> str:
        profile = builtin_profile(self.profile_name, self.workspace)
        return f"Sandbox backend: {self.backend_name}\n{profile.describe()}"


def truncate(text: str, limit: int) -> tuple[str, bool]:
    """Cut text to at most ``limit`` characters plus a marker."""
    if limit <= 0 or len(text) <= limit:
        return text, False
    dropped = len(text) - limit
    return text[:limit] + f"\n... [truncated {dropped} chars]", True


def spawn(
    invocation: SandboxInvocation,
    command: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
) -> ExecutionResult:
    """Run a shell command under a resolved invocation and wait for it.

    The child gets its own process group so a timeout kills it together with
    anything it started.

    Raises:
        ExecutionTimeout: If the command ran past ``timeout``; the partial
            result is attached and the process group is already dead.
        SandboxFailure: If the sandbox wrapper failed to start or to confine.
        SpawnError: If the unconfined process could not be started.
    """
    argv = invocation.argv(command)
    backend = invocation.backend
    if not backend.confined:
        logger.warning("spawning unconfined command=%s profile=%s", command, invocation.profile.name)
    logger.debug("sandbox spawn backend=%s profile=%s command=%s", backend.name, invocation.profile.name, command)

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            cwd=invocation.workspace,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        if backend.confined:
            logger.warning("sandbox start failed backend=%s error=%s", backend.name, exc)
            raise SandboxFailure(f"Failed to start {backend.name} sandbox: {exc}") from exc
        raise SpawnError(f"Failed to spawn '{command}': {exc}") from exc

    timed_out = False
    try:
        out, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_group(proc)
        out, err = proc.communicate()
    duration = time.monotonic() - start

    stdout, out_truncated = truncate(out.decode("utf-8", errors="replace"), max_output_chars)
    stderr, err_truncated = truncate(err.decode("utf-8", errors="replace"), max_output_chars)
    result = ExecutionResult(
        command=command,
        stdout=stdout,
        stderr=stderr,
        exit_code=proc.returncode,
        duration=duration,
        timed_out=timed_out,
        truncated=out_truncated or err_truncated,
        profile=invocation.profile.name,
    )

    if timed_out:
        logger.info("sandbox timeout command=%s seconds=%s", command, timeout)
        raise ExecutionTimeout(result)

    if backend.confined and result.exit_code != 0 and stderr.lstrip().startswith(_FAILURE_PREFIXES):
        logger.warning("sandbox failure backend=%s stderr=%s", backend.name, stderr.strip())
        raise SandboxFailure(f"{backend.name} could not confine the command: {stderr.strip()}")

    logger.debug("sandbox result exit_code=%s duration=%.3f", result.exit_code, duration)
    return result


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("process group already gone pid=%s", proc.pid)
