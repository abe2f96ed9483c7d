from pathlib import Path


class HealthLogError(RuntimeError):
    pass


class PrivilegeError(HealthLogError):
    def __init__(self, message: str = "Please run as root (use sudo)") -> None:
        super().__init__(message)


class WriteAccessError(HealthLogError):
    def __init__(self, path: Path, reason: str | None = None) -> None:
        message = f"Cannot write to {path}. Please run as root or check permissions."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.path = path


class SchedulerUnavailable(HealthLogError):
    pass


class UsageError(HealthLogError):
    def __init__(self, token: str) -> None:
        super().__init__(f"Unknown option: {token}")
        self.token = token


class OwnershipError(HealthLogError):
    def __init__(self, path: Path, owner: str, group: str, reason: str) -> None:
        super().__init__(f"Cannot set owner of {path} to {owner}:{group}: {reason}")
        self.path = path
