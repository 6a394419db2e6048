# archstrap/utils/exceptions.py

# --- 1. Shell Command Exceptions ---

class ShellCommandError(Exception):
    """Base class for errors related to shell command execution."""

    def __init__(self, command: str, exit_code: int = -1, stdout: str = "", stderr: str = "", message: str = "Command execution failed."):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{message} (Command: '{command}', Exit Code: {exit_code})")


class CommandNotFoundError(ShellCommandError):
    """Raised when the executable specified in the command cannot be found."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=127, stdout=stdout, stderr=stderr, message="Command not found.")


class CommandTimeoutError(ShellCommandError):
    """Raised when the command exceeds the execution timeout."""

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, exit_code=124, stdout=stdout, stderr=stderr, message=f"Command timed out after {timeout} seconds.")


class InvalidCommandError(ShellCommandError):
    """Raised when the command list is invalid, empty, or improperly formatted."""

    def __init__(self, command: str, message: str):
        super().__init__(command, exit_code=-2, message=message)


class PermissionDeniedError(ShellCommandError):
    """Raised when command execution fails due to permissions."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=126, stdout=stdout, stderr=stderr, message="Permission denied.")


# --- 2. Installer Exceptions ---

class InstallerError(Exception):
    """Base class for every fatal installer condition reported to the operator."""


class ConfigNotFoundError(InstallerError):
    def __init__(self, path):
        self.path = str(path)
        super().__init__(f'Configuration file "{self.path}" not found')


class ConfigInvalidError(InstallerError):
    """Raised with a field-level description of the first violation found."""

    def __init__(self, desc: str):
        self.desc = desc
        super().__init__(f"Configuration invalid: {desc}")


class UnknownInstallStepError(ConfigInvalidError):
    def __init__(self, step: str):
        self.step = step
        super().__init__(f'unknown installation step "{step}"')


class DeviceNotFoundError(InstallerError):
    def __init__(self, device):
        self.device = str(device)
        super().__init__(f'Device "{self.device}" not found')


class DeviceAccessError(InstallerError):
    def __init__(self, device, reason: str):
        self.device = str(device)
        super().__init__(f'Cannot access device "{self.device}": {reason}')


class SystemFileError(InstallerError):
    """A system file the installer edits or moves is missing or not writable."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        super().__init__(f'Cannot update "{self.path}": {reason}')


class NetworkError(InstallerError):
    def __init__(self):
        super().__init__("Error: network access required")


class SudoRequiredError(InstallerError):
    def __init__(self):
        super().__init__("Error: command must be executed from super user")


class UnknownArchISOProfileError(InstallerError):
    def __init__(self, profile: str):
        self.profile = profile
        super().__init__(f'Unknown profile, expected either "releng" or "baseline", got: "{profile}"')


class InvalidUmaskError(InstallerError):
    def __init__(self, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(f"Invalid umask, expected {oct(expected)}, got {oct(got)}")


class PartitionPlanError(InstallerError):
    """Raised when the partition table cannot hold the planned layout, or the kernel
    view does not match it after writing."""


class UserDeclinedError(InstallerError):
    """The operator refused a destructive confirmation. Ends the run early without an error status."""

    def __init__(self, message: str = "Operation declined by user"):
        super().__init__(message)
