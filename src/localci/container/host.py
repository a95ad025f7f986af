#!/usr/bin/env python3
"""
Host-process execution mode.

HostExecutor satisfies the Container contract on the local filesystem:
processes run directly on the host inside a per-job scratch tree and
``remove()`` runs the recorded cleanup that deletes that tree.
"""

import io
import logging
import os
import shutil
import tarfile
from typing import Callable, Dict, List, Optional

from localci.common.executor import ExecutionContext, Executor, Leaf, noop
from localci.container.base import Container, FileEntry, parse_env_file, prepend_paths
from localci.core.console import Console
from localci.core.errors import ContainerError

logger = logging.getLogger(__name__)


class HostExecutor(Container):
    """Runs job processes on the host.

    Attributes:
        path: Default working directory for processes.
        clean_up: Called once by ``remove()``.
        stdout: Receives each process output line.
    """

    def __init__(
        self,
        path: str,
        clean_up: Optional[Callable[[], None]] = None,
        stdout: Optional[Callable[[str], object]] = None,
        console: Optional[Console] = None,
    ):
        self.path = path
        self.clean_up = clean_up
        self.stdout = stdout
        self.console = console or Console()

    def pull(self, force_pull: bool) -> Executor:
        return noop()

    def create(self, cap_add: List[str], cap_drop: List[str]) -> Executor:
        return noop()

    def start(self, attach: bool) -> Executor:
        return noop()

    def update_from_image_env(self, env: Dict[str, str]) -> Executor:
        return noop()

    @staticmethod
    def _read(path: str) -> str:
        if not os.path.isfile(path):
            return ""
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()

    def update_from_env(self, src_path: str, env: Dict[str, str]) -> Executor:
        def _update(ctx: ExecutionContext) -> None:
            env.update(parse_env_file(self._read(src_path)))

        return Leaf(_update, name="host-env-file")

    def update_from_path(self, env: Dict[str, str]) -> Executor:
        def _update(ctx: ExecutionContext) -> None:
            if env.get("GITHUB_PATH"):
                prepend_paths(env, self._read(env["GITHUB_PATH"]), separator=os.pathsep)

        return Leaf(_update, name="host-path-file")

    def exec(
        self,
        command: List[str],
        cmdline: str,
        env: Dict[str, str],
        user: str,
        workdir: str,
    ) -> Executor:
        def _exec(ctx: ExecutionContext) -> None:
            wd = workdir if workdir and os.path.isabs(workdir) else os.path.join(self.path, workdir or "")
            ctx.logger.debug("exec cmd=%s workdir=%s", command, wd)
            if ctx.dryrun:
                return
            try:
                self.console.sh(
                    list(command),
                    timeout=None,
                    env=dict(env),
                    cwd=wd,
                    on_line=self.stdout or ctx.logger.info,
                )
            except (RuntimeError, OSError) as e:
                raise ContainerError(f"exec failed: {e}", cause=e) from e

        return Leaf(_exec, name="host-exec")

    def copy(self, dest_path: str, *files: FileEntry) -> Executor:
        def _copy(ctx: ExecutionContext) -> None:
            ctx.logger.debug("Writing entries to %s: %s", dest_path, [f.name for f in files])
            for entry in files:
                target = os.path.join(dest_path, entry.name)
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with open(target, "w") as f:
                    f.write(entry.body)
                os.chmod(target, entry.mode)

        return Leaf(_copy, name="host-copy")

    def copy_dir(self, dest_path: str, src_path: str, use_gitignore: bool) -> Executor:
        def _copy_dir(ctx: ExecutionContext) -> None:
            ctx.logger.info("Copying %s to %s", src_path, dest_path)
            shutil.copytree(
                os.path.normpath(src_path),
                dest_path,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(".git") if use_gitignore else None,
            )

        return Leaf(_copy_dir, name="host-copy-dir")

    def get_container_archive(self, src_path: str) -> bytes:
        if not os.path.exists(src_path):
            raise ContainerError(f"no such path: {src_path}")
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            tar.add(src_path, arcname=os.path.basename(src_path.rstrip(os.sep)))
        return buffer.getvalue()

    def remove(self) -> Executor:
        def _remove(ctx: ExecutionContext) -> None:
            if self.clean_up is not None:
                self.clean_up()
                self.clean_up = None

        return Leaf(_remove, name="host-remove")

    def close(self) -> Executor:
        return noop()
