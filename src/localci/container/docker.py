#!/usr/bin/env python3
"""Module to run job containers through the docker CLI.

Each lifecycle operation shells out to ``docker`` via Console and is
returned as an Executor. Output of processes started in the container is
forwarded line by line to the ``stdout`` handler of the container input.
"""
# built-in modules
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import typing
# user-defined modules
from localci.common.executor import ExecutionContext, Executor, Leaf
from localci.container.base import (
    Container,
    FileEntry,
    NewContainerInput,
    merge_image_env,
    parse_env_file,
    prepend_paths,
    read_archive_file,
)
from localci.core.console import Console
from localci.core.errors import ContainerError

logger = logging.getLogger(__name__)

_MISSING_PATH_MARKERS = ("Could not find the file", "No such container:path")


def _registry_of(image: str) -> str:
    """Return the registry host of an image reference, '' for Docker Hub."""
    first, sep, _ = image.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first
    return ""


class DockerContainer(Container):
    """Job container backed by the docker CLI.

    Attributes:
        input (NewContainerInput): The creation parameters.
        id (str): The container id once created, None otherwise.
        console (Console): The console used to run docker.
    """

    def __init__(self, input: NewContainerInput, console: typing.Optional[Console] = None) -> None:
        self.input = input
        self.id: typing.Optional[str] = None
        self.console = console or Console(shellVerbose=True)

    def _docker(self, ctx: ExecutionContext, args: typing.List[str], **kwargs) -> str:
        ctx.logger.debug("🐳  docker %s", shlex.join(args) if not kwargs.get("secret") else args[0])
        try:
            return self.console.sh(["docker"] + args, **kwargs)
        except RuntimeError as e:
            raise ContainerError(f"docker {args[0]} failed: {e}", cause=e) from e

    def _find(self, ctx: ExecutionContext) -> typing.Optional[str]:
        output = self._docker(
            ctx, ["ps", "-aq", "--no-trunc", "--filter", f"name=^/{self.input.name}$"]
        )
        return output.splitlines()[0] if output else None

    def pull(self, force_pull: bool) -> Executor:
        def _pull(ctx: ExecutionContext) -> None:
            image = self.input.image
            ctx.logger.debug("🐳  docker pull image=%s platform=%s", image, self.input.platform)
            if ctx.dryrun:
                return
            if not force_pull and self._docker(ctx, ["images", "-q", image]):
                ctx.logger.debug("Image %s exists locally, skipping pull", image)
                return
            if self.input.username and self.input.password:
                login = ["login", "--username", self.input.username, "--password-stdin"]
                registry = _registry_of(image)
                if registry:
                    login.append(registry)
                self._docker(
                    ctx, login, secret=True, stdin=self.input.password.encode()
                )
            args = ["pull"]
            if self.input.platform:
                args += ["--platform", self.input.platform]
            self._docker(ctx, args + [image], timeout=None)

        return Leaf(_pull, name="docker-pull")

    def create(self, cap_add: typing.List[str], cap_drop: typing.List[str]) -> Executor:
        def _create(ctx: ExecutionContext) -> None:
            ctx.logger.info("🐳  docker create image=%s name=%s", self.input.image, self.input.name)
            if ctx.dryrun:
                return
            existing = self._find(ctx)
            if existing:
                self.id = existing
                ctx.logger.debug("Reusing container %s", existing)
                return

            args = ["create", "--name", self.input.name]
            entrypoint = list(self.input.entrypoint)
            if entrypoint:
                args += ["--entrypoint", entrypoint[0]]
            if self.input.working_dir:
                args += ["--workdir", self.input.working_dir]
            if self.input.allocate_terminal:
                args.append("--tty")
            for env in self.input.env:
                args += ["--env", env]
            for bind in self.input.binds:
                args += ["--volume", bind]
            for source, target in self.input.mounts.items():
                args += ["--mount", f"type=volume,source={source},target={target}"]
            if self.input.network_mode:
                args += ["--network", self.input.network_mode]
            if self.input.privileged:
                args.append("--privileged")
            if self.input.userns_mode:
                args += ["--userns", self.input.userns_mode]
            if self.input.platform:
                args += ["--platform", self.input.platform]
            if self.input.hostname:
                args += ["--hostname", self.input.hostname]
            for cap in cap_add:
                args += ["--cap-add", cap]
            for cap in cap_drop:
                args += ["--cap-drop", cap]
            args.append(self.input.image)
            args += entrypoint[1:] + list(self.input.cmd)

            self.id = self._docker(ctx, args).splitlines()[-1]
            ctx.logger.debug("Created container name=%s id=%s", self.input.name, self.id)

        return Leaf(_create, name="docker-create")

    def start(self, attach: bool) -> Executor:
        def _start(ctx: ExecutionContext) -> None:
            ctx.logger.info("🐳  docker run image=%s", self.input.image)
            if ctx.dryrun:
                return
            args = ["start"]
            if attach:
                args.append("--attach")
            self._docker(ctx, args + [self.id], on_line=self.input.stdout if attach else None, timeout=None)

        return Leaf(_start, name="docker-start")

    def update_from_image_env(self, env: typing.Dict[str, str]) -> Executor:
        def _update(ctx: ExecutionContext) -> None:
            if ctx.dryrun:
                return
            output = self._docker(
                ctx, ["image", "inspect", "--format", "{{range .Config.Env}}{{println .}}{{end}}", self.input.image]
            )
            merge_image_env(env, [line for line in output.splitlines() if line])

        return Leaf(_update, name="docker-image-env")

    def _read(self, path: str) -> str:
        try:
            archive = self.get_container_archive(path)
        except ContainerError as e:
            if any(marker in str(e) for marker in _MISSING_PATH_MARKERS):
                return ""
            raise
        return read_archive_file(archive)

    def update_from_env(self, src_path: str, env: typing.Dict[str, str]) -> Executor:
        def _update(ctx: ExecutionContext) -> None:
            if ctx.dryrun:
                return
            env.update(parse_env_file(self._read(src_path)))

        return Leaf(_update, name="docker-env-file")

    def update_from_path(self, env: typing.Dict[str, str]) -> Executor:
        def _update(ctx: ExecutionContext) -> None:
            if ctx.dryrun or not env.get("GITHUB_PATH"):
                return
            prepend_paths(env, self._read(env["GITHUB_PATH"]))

        return Leaf(_update, name="docker-path-file")

    def exec(
        self,
        command: typing.List[str],
        cmdline: str,
        env: typing.Dict[str, str],
        user: str,
        workdir: str,
    ) -> Executor:
        def _exec(ctx: ExecutionContext) -> None:
            wd = workdir
            if not wd:
                wd = self.input.working_dir
            elif not wd.startswith("/"):
                wd = f"{self.input.working_dir}/{wd}"
            ctx.logger.debug("🐳  docker exec cmd=[%s] user=%s workdir=%s", shlex.join(command), user, wd)
            if ctx.dryrun:
                return

            args = ["exec"]
            if self.input.allocate_terminal:
                args.append("--tty")
            for key, value in env.items():
                args += ["--env", f"{key}={value}"]
            if user:
                args += ["--user", user]
            if wd:
                args += ["--workdir", wd]
            try:
                self.console.sh(
                    ["docker"] + args + [self.id] + list(command),
                    timeout=None,
                    on_line=self.input.stdout or ctx.logger.info,
                )
            except RuntimeError as e:
                raise ContainerError(f"exec failed: {e}", cause=e) from e

        return Leaf(_exec, name="docker-exec")

    def copy(self, dest_path: str, *files: FileEntry) -> Executor:
        def _copy(ctx: ExecutionContext) -> None:
            ctx.logger.debug("Writing entries to %s: %s", dest_path, [f.name for f in files])
            if ctx.dryrun:
                return
            with tempfile.TemporaryDirectory(prefix="localci-copy-") as staging:
                for entry in files:
                    target = os.path.join(staging, entry.name)
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    with open(target, "w") as f:
                        f.write(entry.body)
                    os.chmod(target, entry.mode)
                self._docker(ctx, ["exec", "--user", "root", self.id, "mkdir", "-p", dest_path])
                self._docker(ctx, ["cp", f"{staging}/.", f"{self.id}:{dest_path}"])

        return Leaf(_copy, name="docker-copy")

    def copy_dir(self, dest_path: str, src_path: str, use_gitignore: bool) -> Executor:
        def _copy_dir(ctx: ExecutionContext) -> None:
            ctx.logger.info("🐳  docker cp src=%s dst=%s", src_path, dest_path)
            if ctx.dryrun:
                return
            self._docker(ctx, ["exec", "--user", "root", self.id, "mkdir", "-p", dest_path])
            src = os.path.normpath(src_path)
            if not use_gitignore:
                self._docker(ctx, ["cp", f"{src}/.", f"{self.id}:{dest_path}"], timeout=None)
                return
            # only files git would track, including untracked ones not ignored
            listing = self.console.sh(
                ["git", "ls-files", "-z", "--cached", "--others", "--exclude-standard"],
                cwd=src,
                canFail=True,
            )
            with tempfile.TemporaryDirectory(prefix="localci-tree-") as staging:
                names = [n for n in listing.split("\0") if n]
                if names:
                    for name in names:
                        source = os.path.join(src, name)
                        if not os.path.isfile(source):
                            continue
                        target = os.path.join(staging, name)
                        os.makedirs(os.path.dirname(target), exist_ok=True)
                        shutil.copy2(source, target)
                else:
                    shutil.copytree(src, staging, dirs_exist_ok=True)
                self._docker(ctx, ["cp", f"{staging}/.", f"{self.id}:{dest_path}"], timeout=None)

        return Leaf(_copy_dir, name="docker-copy-dir")

    def get_container_archive(self, src_path: str) -> bytes:
        proc = subprocess.run(
            ["docker", "cp", f"{self.id}:{src_path}", "-"],
            capture_output=True,
            check=False,
        )
        if proc.returncode != 0:
            raise ContainerError(
                f"reading {src_path} failed: {proc.stderr.decode('utf-8', errors='replace').strip()}"
            )
        return proc.stdout

    def remove(self) -> Executor:
        def _remove(ctx: ExecutionContext) -> None:
            if ctx.dryrun:
                return
            if not self.id:
                # a handle that never created its container may still name a stale one
                self.id = self._find(ctx)
                if not self.id:
                    return
            ctx.logger.debug("Removing container %s", self.id)
            self._docker(ctx, ["rm", "--force", "--volumes", self.id])
            self.id = None

        return Leaf(_remove, name="docker-remove")

    def close(self) -> Executor:
        # the CLI driver keeps no client connection open
        return Leaf(lambda ctx: None, name="docker-close")


def volume_remove_executor(volume: str, force: bool, console: typing.Optional[Console] = None) -> Executor:
    """Remove a named volume; a missing volume counts as removed."""
    console = console or Console()

    def _remove(ctx: ExecutionContext) -> None:
        try:
            names = console.sh(["docker", "volume", "ls", "--quiet"]).splitlines()
        except RuntimeError as e:
            raise ContainerError(f"listing volumes failed: {e}", cause=e) from e
        if volume not in names:
            return
        ctx.logger.debug("🐳  docker volume rm %s", volume)
        if ctx.dryrun:
            return
        args = ["docker", "volume", "rm"]
        if force:
            args.append("--force")
        try:
            console.sh(args + [volume])
        except RuntimeError as e:
            raise ContainerError(f"removing volume {volume} failed: {e}", cause=e) from e

    return Leaf(_remove, name=f"volume-rm-{volume}")
