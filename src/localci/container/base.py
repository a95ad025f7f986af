#!/usr/bin/env python3
"""
Container lifecycle contract.

A Container is the job's execution sandbox. Every lifecycle operation
returns an Executor so the orchestrator can compose them declaratively;
drivers let failures propagate untouched.
"""

import io
import tarfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from localci.common.executor import Executor


@dataclass
class NewContainerInput:
    """Everything a driver needs to create a job container."""

    image: str
    name: str
    username: str = ""
    password: str = ""
    entrypoint: List[str] = field(default_factory=list)
    cmd: List[str] = field(default_factory=list)
    working_dir: str = ""
    env: List[str] = field(default_factory=list)
    binds: List[str] = field(default_factory=list)
    mounts: Dict[str, str] = field(default_factory=dict)
    stdout: Optional[Callable[[str], object]] = None
    network_mode: str = ""
    privileged: bool = False
    userns_mode: str = ""
    platform: str = ""
    hostname: str = ""
    allocate_terminal: bool = False


@dataclass
class FileEntry:
    """A file to copy into a container."""

    name: str
    mode: int = 0o644
    body: str = ""


def get_env_list_from_map(env: Dict[str, str]) -> List[str]:
    return [f"{k}={v}" for k, v in env.items()]


def parse_env_file(text: str) -> Dict[str, str]:
    """Parse the flat key/value file format step processes write.

    Supports ``NAME=value`` lines and multiline ``NAME<<DELIMITER`` blocks
    terminated by a line equal to DELIMITER.
    """
    result: Dict[str, str] = {}
    name = ""
    delimiter = None
    collected: List[str] = []

    for line in text.splitlines():
        if delimiter is not None:
            if line == delimiter:
                result[name] = "\n".join(collected)
                delimiter = None
                collected = []
            else:
                collected.append(line)
            continue

        single = line.find("=")
        multi = line.find("<<")
        if single != -1 and (multi == -1 or single < multi):
            result[line[:single]] = line[single + 1:]
        elif multi != -1:
            name = line[:multi]
            delimiter = line[multi + 2:]
            collected = []

    return result


def merge_image_env(env: Dict[str, str], image_env: List[str]) -> None:
    """Fold ``KEY=VALUE`` entries from an image config into ``env``.

    PATH entries are appended to an existing PATH; other keys only fill
    gaps and never override values already present.
    """
    for entry in image_env:
        key, sep, value = entry.partition("=")
        if not sep:
            continue
        if key == "PATH":
            env["PATH"] = f"{env['PATH']}:{value}" if env.get("PATH") else value
        elif not env.get(key):
            env[key] = value


def prepend_paths(env: Dict[str, str], text: str, separator: str = ":") -> None:
    """Prepend every non-empty line of a GITHUB_PATH file to ``env['PATH']``."""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        env["PATH"] = f"{line}{separator}{env['PATH']}" if env.get("PATH") else line


class Container(ABC):
    """Ordered sandbox operations used by the job orchestrator."""

    @abstractmethod
    def pull(self, force_pull: bool) -> Executor:
        """Pull the image."""

    @abstractmethod
    def create(self, cap_add: List[str], cap_drop: List[str]) -> Executor:
        """Create the container, reusing one with the same name."""

    @abstractmethod
    def start(self, attach: bool) -> Executor:
        """Start the container."""

    @abstractmethod
    def update_from_image_env(self, env: Dict[str, str]) -> Executor:
        """Seed ``env`` from the image configuration."""

    @abstractmethod
    def update_from_env(self, src_path: str, env: Dict[str, str]) -> Executor:
        """Merge a key/value file from inside the sandbox into ``env``."""

    @abstractmethod
    def update_from_path(self, env: Dict[str, str]) -> Executor:
        """Prepend entries of the GITHUB_PATH file to ``env['PATH']``."""

    @abstractmethod
    def exec(
        self,
        command: List[str],
        cmdline: str,
        env: Dict[str, str],
        user: str,
        workdir: str,
    ) -> Executor:
        """Run a process inside the sandbox."""

    @abstractmethod
    def copy(self, dest_path: str, *files: FileEntry) -> Executor:
        """Write files into the sandbox below ``dest_path``."""

    @abstractmethod
    def copy_dir(self, dest_path: str, src_path: str, use_gitignore: bool) -> Executor:
        """Copy a host directory tree into the sandbox."""

    @abstractmethod
    def get_container_archive(self, src_path: str) -> bytes:
        """Return a tar archive of ``src_path`` inside the sandbox."""

    @abstractmethod
    def remove(self) -> Executor:
        """Remove the sandbox."""

    @abstractmethod
    def close(self) -> Executor:
        """Release driver resources."""


def read_archive_file(archive: bytes) -> str:
    """Return the content of the first regular file in a tar archive."""
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        for member in tar:
            if member.isfile():
                return tar.extractfile(member).read().decode("utf-8", errors="replace")
    return ""
