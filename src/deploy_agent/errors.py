"""Failure taxonomy shared by conventions, extractors and the stack orchestrator.

Every failure carries an :class:`ErrorKind` discriminant so callers can
branch on ``exc.kind`` instead of catching a broad base type.  Failures
raised by the CloudFormation orchestration also carry a stable
documentation code (``AWS-CLOUDFORMATION-ERROR-00NN``); these codes are part
of the external contract and must not be renumbered.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

DOCUMENTATION_URL = "https://g.octopushq.com/AwsCloudFormationDeploy"


class ErrorKind(str, Enum):
    """Discriminant for deployment failures."""
    PERMISSION = "permission"   # 权限不足，步骤无法产出输出变量
    UNKNOWN = "unknown"         # 未分类的云服务错误
    ROLLBACK = "rollback"       # 栈操作报告回滚
    EXTRACTION = "extraction"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class ErrorCode:
    """Documented CloudFormation error codes."""
    ROLLBACK_DETECTED = "AWS-CLOUDFORMATION-ERROR-0001"
    EVENTS_PERMISSION = "AWS-CLOUDFORMATION-ERROR-0002"
    EVENTS_UNKNOWN = "AWS-CLOUDFORMATION-ERROR-0003"
    DESCRIBE_PERMISSION = "AWS-CLOUDFORMATION-ERROR-0004"
    DESCRIBE_UNKNOWN = "AWS-CLOUDFORMATION-ERROR-0005"
    STACK_MISSING = "AWS-CLOUDFORMATION-ERROR-0006"
    WAIT_TIMEOUT = "AWS-CLOUDFORMATION-ERROR-0007"
    DEPLOY_PERMISSION = "AWS-CLOUDFORMATION-ERROR-0008"
    DEPLOY_UNKNOWN = "AWS-CLOUDFORMATION-ERROR-0009"
    SERVICE_EXCEPTION = "AWS-CLOUDFORMATION-ERROR-0014"


def documentation_link(code: str) -> str:
    return f"{DOCUMENTATION_URL}#{code.lower()}"


def format_coded_message(code: str, message: str, detail: Optional[str] = None) -> str:
    """Build ``<code>: <message>`` followed by optional detail and the remediation link."""
    lines = [f"{code}: {message}"]
    if detail:
        lines.append(detail)
    lines.append(f"For more information visit {documentation_link(code)}")
    return "\n".join(lines)


class DeploymentError(RuntimeError):
    """Base class for classified deployment failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class PermissionException(DeploymentError):
    """The remote operation was denied; the stack might still exist."""

    kind = ErrorKind.PERMISSION


class UnknownException(DeploymentError):
    """An unclassified provider-side failure."""

    kind = ErrorKind.UNKNOWN


class RollbackException(DeploymentError):
    """The stack event stream reported a rollback or failure status."""

    kind = ErrorKind.ROLLBACK

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        resource: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(message, code)


class StackTimeoutException(DeploymentError):
    kind = ErrorKind.TIMEOUT


class ExtractionException(DeploymentError):
    """A package could not be extracted."""

    kind = ErrorKind.EXTRACTION


class UnsupportedPackageKindException(ExtractionException):
    """No registered extractor handles the requested package kind."""

    def __init__(self, kind: str, supported: list[str]) -> None:
        self.package_kind = kind
        self.supported = supported
        super().__init__(
            f"No extractor is registered for package kind '{kind}'. "
            f"Supported kinds: {', '.join(supported) or '(none)'}"
        )


class DeploymentCancelledException(DeploymentError):
    kind = ErrorKind.CANCELLED
