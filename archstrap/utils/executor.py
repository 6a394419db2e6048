# archstrap/utils/executor.py

import subprocess
import shlex
from typing import IO, Dict, List, Optional, Tuple

from archstrap.utils.logger import RichAppLogger
from archstrap.utils.exceptions import (
    ShellCommandError, CommandNotFoundError, CommandTimeoutError,
    InvalidCommandError, PermissionDeniedError,
)

__all__ = [
    "Executor", "ShellCommandError", "CommandNotFoundError", "CommandTimeoutError",
    "InvalidCommandError", "PermissionDeniedError",
]


class Executor:
    """
    Runs external programs synchronously, using Dependency Injection for logging.

    Every invocation is an argument vector; the program and its arguments are logged
    before the process is spawned, and success is decided by the exit status alone.
    """

    def __init__(self,
                 logger_instance: RichAppLogger,
                 default_timeout: Optional[float] = None,
                 chroot_path: str = "/mnt"):
        self.logger = logger_instance

        if default_timeout is not None and default_timeout <= 0:
            self.logger.error("Default timeout must be a positive number or None.")
            raise ValueError("Default timeout must be a positive number or None.")
        if not isinstance(chroot_path, str) or not chroot_path:
            self.logger.error("Chroot path must be a non-empty string.")
            raise ValueError("Chroot path must be a non-empty string.")

        self._default_timeout = default_timeout
        self._chroot_path = chroot_path
        self.logger.debug(f"Executor initialized with default_timeout: {self._default_timeout}, chroot_path: {self._chroot_path}")

    def _prepare_command(self, command: List[str], chroot: bool) -> List[str]:
        """
        Validates the argument vector and prepends arch-chroot if chroot is True.
        """
        if not command or not isinstance(command, (list, tuple)):
            self.logger.error(f"Invalid command: {command!r}. Expected a non-empty list of strings.")
            raise InvalidCommandError(str(command), "Command must be a non-empty list of strings.")

        parsed_command = [str(arg) if hasattr(arg, "__fspath__") else arg for arg in command]
        if not all(isinstance(arg, str) for arg in parsed_command):
            raise InvalidCommandError(str(command), "All elements in command list must be strings.")

        if chroot:
            return ["arch-chroot", self._chroot_path] + parsed_command
        return parsed_command

    def execute_command(self,
                        command: List[str],
                        capture_output: bool = True,
                        timeout: Optional[float] = None,
                        check: bool = True,
                        input: Optional[str] = None,
                        stdout: Optional[IO] = None,
                        cwd: Optional[str] = None,
                        env: Optional[Dict[str, str]] = None,
                        ) -> Tuple[int, str, str]:
        """
        Executes an argument vector using subprocess.run. This is the low-level execution method.

        `input` is written to the child's stdin; it is never logged. When `stdout` is a
        file object the child's standard output goes there instead of being captured.
        """
        actual_timeout = timeout if timeout is not None else self._default_timeout
        cmd_string_for_log = shlex.join(command)

        self.logger.debug(f"Attempting low-level execution: '{cmd_string_for_log}' "
                          f"timeout={actual_timeout}s, capture_output={capture_output}, check={check}, "
                          f"stdin={'piped' if input is not None else 'inherited'}")

        stdout_target = stdout if stdout is not None else (subprocess.PIPE if capture_output else None)
        stderr_target = subprocess.PIPE if capture_output else None

        try:
            process = subprocess.run(
                command,
                input=input,
                stdout=stdout_target,
                stderr=stderr_target,
                text=True,
                timeout=actual_timeout,
                check=False,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            self.logger.error(f"Command '{cmd_string_for_log}' not found. Ensure it's in the system's PATH.")
            raise CommandNotFoundError(command=cmd_string_for_log, stdout="", stderr="Command not found. Check PATH.")
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"Command '{cmd_string_for_log}' timed out after {actual_timeout} seconds.")
            out = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            err = e.stderr.decode() if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise CommandTimeoutError(command=cmd_string_for_log, timeout=actual_timeout, stdout=out, stderr=err)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Argument error during low-level command execution '{cmd_string_for_log}': {e}")
            raise InvalidCommandError(cmd_string_for_log, f"Argument error in command execution: {e}")

        out = process.stdout if isinstance(process.stdout, str) else ""
        err = process.stderr if isinstance(process.stderr, str) else ""
        exit_code = process.returncode

        if check and exit_code != 0:
            self.logger.error(f"Command: '{cmd_string_for_log}', Exit Code: {exit_code}, Stderr: {err.strip()}")

            if exit_code == 127:
                raise CommandNotFoundError(command=cmd_string_for_log, stdout=out, stderr=err)
            elif exit_code == 126:
                raise PermissionDeniedError(command=cmd_string_for_log, stdout=out, stderr=err)
            raise ShellCommandError(
                command=cmd_string_for_log,
                exit_code=exit_code,
                stdout=out,
                stderr=err,
                message=f"Command failed with exit code {exit_code}",
            )

        self.logger.debug(f"Low-level execution of '{cmd_string_for_log}' completed with exit code {exit_code}")
        return exit_code, out, err

    def run(self,
            description: str,
            command: List[str],
            chroot: bool = False,
            dryrun: bool = False,
            capture_output: bool = True,
            timeout: Optional[float] = None,
            check: bool = True,
            input: Optional[str] = None,
            stdout: Optional[IO] = None,
            cwd: Optional[str] = None,
            env: Optional[Dict[str, str]] = None,
            ) -> Tuple[int, str, str]:
        """
        Executes a command inside the RichAppLogger's execution_step context manager
        for TUI feedback, logging, and centralized exception handling.
        """
        prepared_command_list = self._prepare_command(command, chroot=chroot)

        # Program and arguments are on record before anything is spawned
        self.logger.info(f"$ {shlex.join(prepared_command_list)}")

        if dryrun:
            self.logger.info(f"DRY RUN: Execution skipped for: '{description}'")
            return 0, "DRY_RUN_STDOUT", "DRY_RUN_STDERR"

        with self.logger.execution_step(description):
            exit_code, out, err = self.execute_command(
                command=prepared_command_list,
                capture_output=capture_output,
                timeout=timeout,
                check=check,
                input=input,
                stdout=stdout,
                cwd=cwd,
                env=env,
            )

            self.logger.debug(f"Command '{description}' completed. Output details:")
            if out:
                self.logger.debug(f"  Stdout:\n{out.strip()}")
            if err:
                self.logger.debug(f"  Stderr:\n{err.strip()}")

            return exit_code, out, err

    def output(self, description: str, command: List[str], **kwargs) -> str:
        """Runs a command that must succeed and returns its stripped standard output."""
        _, out, _ = self.run(description, command, capture_output=True, check=True, **kwargs)
        return out.strip()
