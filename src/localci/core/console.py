#!/usr/bin/env python3
"""Module to run console commands.

This module provides a class to run host commands, either as a shell string
or as an argument vector, optionally streaming each output line to a handler.
"""
# built-in modules
import logging
import shlex
import subprocess
import typing

logger = logging.getLogger(__name__)

LineHandler = typing.Callable[[str], typing.Any]


class Console:
    """Class to run console commands.

    Attributes:
        shellVerbose (bool): Log every command before it runs.
        live_output (bool): Stream output lines while the command runs.
    """

    def __init__(
            self,
            shellVerbose: bool = True,
            live_output: bool = False
        ) -> None:
        """Constructor of the Console class.

        Args:
            shellVerbose (bool): The shell verbose flag.
            live_output (bool): The live output flag.
        """
        self.shellVerbose = shellVerbose
        self.live_output = live_output

    def sh(
            self,
            command: typing.Union[str, typing.Sequence[str]],
            canFail: bool = False,
            timeout: typing.Optional[int] = 60,
            secret: bool = False,
            env: typing.Optional[typing.Dict[str, str]] = None,
            cwd: typing.Optional[str] = None,
            on_line: typing.Optional[LineHandler] = None,
            stdin: typing.Optional[bytes] = None,
        ) -> str:
        """Run a command.

        A string is run through the shell, a sequence is executed directly.

        Args:
            command: The shell command or argument vector.
            canFail (bool): The flag to allow failure.
            timeout (int): The timeout in seconds, None for no timeout.
            secret (bool): The flag to hide the command.
            env (dict): The environment variables.
            cwd (str): The working directory.
            on_line (callable): Receives each output line when streaming.
            stdin (bytes): Data written to the process standard input.

        Returns:
            str: The output of the command.

        Raises:
            RuntimeError: If the command fails or times out.
        """
        shell = isinstance(command, str)
        display = command if shell else shlex.join(command)

        if self.shellVerbose and not secret:
            logger.debug("> %s", display)

        # binary mode so undecodable bytes are replaced instead of raising
        proc = subprocess.Popen(
            command,
            stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            shell=shell,
            universal_newlines=False,
            bufsize=0,
            env=env,
            cwd=cwd,
        )

        try:
            if not (self.live_output or on_line):
                raw_outs, _ = proc.communicate(input=stdin, timeout=timeout)
                outs = raw_outs.decode("utf-8", errors="replace")
            else:
                if stdin is not None:
                    proc.stdin.write(stdin)
                    proc.stdin.close()
                lines = []
                for raw_line in iter(proc.stdout.readline, b""):
                    line = raw_line.decode("utf-8", errors="replace")
                    if on_line is not None:
                        on_line(line.rstrip("\n"))
                    else:
                        print(line, end="")
                    lines.append(line)
                outs = "".join(lines)
                proc.stdout.close()
                proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            proc.kill()
            raise RuntimeError("Console script timeout") from exc

        if proc.returncode != 0 and not canFail:
            shown = "<secret>" if secret else display
            raise RuntimeError(
                "Subprocess '"
                + shown
                + "' failed with exit code "
                + str(proc.returncode)
            )

        return outs.strip()
