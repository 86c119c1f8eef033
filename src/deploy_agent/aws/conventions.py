"""CloudFormation conventions.

:class:`CloudFormationInstallationConventionBase` holds the orchestration
primitives (stack queries, the rollback watcher, provider warning handling and
output variables). :class:`DeployAwsCloudFormationConvention` uses them to
create or update a stack and publish its outputs.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, TextIO, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from ..conventions.base import InstallConvention
from ..deployment import RunningDeployment
from ..errors import (
    DeploymentError,
    ErrorCode,
    PermissionException,
    UnknownException,
    format_coded_message,
)
from ..processes.service_messages import set_output_variable
from ..utils.logging import get_logger
from ..variables import SpecialVariables
from .cloudformation import (
    ClientFactory,
    StackArn,
    StackDescription,
    StackEvent,
    describe_stack,
    error_code,
    error_message,
    get_last_stack_event,
    is_access_denied,
    is_no_updates,
)
from .stack_events import EventFilter, StackEventLogger
from .waiter import wait_for_stack_completion

if TYPE_CHECKING:
    from ..config import AwsConfig

logger = get_logger(__name__)

T = TypeVar("T")

OUTPUT_PREFIX = "AwsOutputs"


def _find_client_error(exc: BaseException) -> Optional[ClientError]:
    while exc is not None:
        if isinstance(exc, ClientError):
            return exc
        exc = exc.__cause__
    return None


def web_exception_message(exc: BaseException) -> Optional[str]:
    """HTTP level detail carried by a provider error, if there is any."""
    client_error = _find_client_error(exc)
    if client_error is None:
        return None
    metadata = client_error.response.get("ResponseMetadata", {}) or {}
    status = metadata.get("HTTPStatusCode")
    if status is None:
        return None
    request_id = metadata.get("RequestId")
    detail = f"The AWS service returned HTTP status {status}"
    if request_id:
        detail += f" (request id {request_id})"
    code = error_code(client_error)
    if code:
        detail += f" with error {code}"
    return f"{detail}: {error_message(client_error)}"


class CloudFormationInstallationConventionBase(InstallConvention):
    """Shared stack orchestration for CloudFormation conventions."""

    def __init__(self, event_logger: StackEventLogger, stream: Optional[TextIO] = None) -> None:
        self.event_logger = event_logger
        self.stream = stream

    def handle_service_exception(self, exc: BaseException) -> None:
        """Log the HTTP detail a provider error can carry."""
        message = web_exception_message(exc)
        if message:
            self.display_warning(ErrorCode.SERVICE_EXCEPTION, message)

    def with_cloud_exception_handling(self, operation: Callable[[], T]) -> T:
        """Run ``operation``; provider errors are logged then re-raised unchanged."""
        try:
            return operation()
        except Exception as exc:
            if _find_client_error(exc) is not None:
                self.handle_service_exception(exc)
            raise

    def display_warning(self, code: str, message: str) -> bool:
        """Display a warning at most once per code; True when it was shown."""
        return self.event_logger.warn(code, message)

    def make_rollback_watcher(
        self,
        client_factory: ClientFactory,
        stack: StackArn,
        expect_success: bool = True,
        missing_is_failure: bool = True,
        event_filter: Optional[EventFilter] = None,
    ) -> Callable[[Optional[StackEvent]], None]:
        """
        Build a handler for the stack poll loop.

        Every call logs the event and raises :class:`RollbackException` when
        it reports a rollback while success was expected. Looking up the
        failed resource that explains a rollback is best effort: it never
        reads past the event that opened the current operation, and a
        permission error there only produces a warning.
        """

        def query(predicate: EventFilter) -> Optional[StackEvent]:
            try:
                return self.with_cloud_exception_handling(
                    lambda: get_last_stack_event(
                        client_factory, stack, predicate, stop_at=StackEvent.starts_operation
                    )
                )
            except PermissionException as exc:
                logger.warning(str(exc))
                return None

        def handler(event: Optional[StackEvent]) -> None:
            self.event_logger.log(event)
            self.event_logger.log_rollback_error(
                event,
                query,
                expect_success=expect_success,
                missing_is_failure=missing_is_failure,
                event_filter=event_filter,
            )

        return handler

    def set_output_variable(self, deployment: RunningDeployment, name: str, value: Optional[str]) -> None:
        variables = deployment.variables
        set_output_variable(f"{OUTPUT_PREFIX}[{name}]", value or "", variables, self.stream)
        logger.info(
            'Saving variable "Octopus.Action[%s].Output.%s[%s]"',
            variables.get(SpecialVariables.Action.NAME, ""),
            OUTPUT_PREFIX,
            name,
        )

    def query_stack(self, client_factory: ClientFactory, stack: StackArn) -> Optional[StackDescription]:
        """Describe the stack; ``None`` when it does not exist."""
        try:
            return describe_stack(client_factory, stack)
        except (ClientError, BotoCoreError) as exc:
            if is_access_denied(exc):
                raise PermissionException(
                    format_coded_message(
                        ErrorCode.DESCRIBE_PERMISSION,
                        "The AWS account used to perform the operation does not have the "
                        "required permissions to describe the CloudFormation stack. "
                        "This means that the step is not able to generate any output variables.",
                        error_message(exc),
                    ),
                    ErrorCode.DESCRIBE_PERMISSION,
                ) from exc
            raise UnknownException(
                format_coded_message(
                    ErrorCode.DESCRIBE_UNKNOWN,
                    "An unrecognised exception was thrown while querying the CloudFormation stacks.",
                    error_message(exc),
                ),
                ErrorCode.DESCRIBE_UNKNOWN,
            ) from exc

    def classify_deploy_error(self, exc: Exception, action: str) -> DeploymentError:
        """Turn a failed create/update/delete call into a classified failure."""
        if is_access_denied(exc):
            return PermissionException(
                format_coded_message(
                    ErrorCode.DEPLOY_PERMISSION,
                    f"The AWS account used to perform the operation does not have the "
                    f"required permissions to {action} the CloudFormation stack.",
                    error_message(exc),
                ),
                ErrorCode.DEPLOY_PERMISSION,
            )
        return UnknownException(
            format_coded_message(
                ErrorCode.DEPLOY_UNKNOWN,
                f"An unrecognised exception was thrown while trying to {action} the CloudFormation stack.",
                error_message(exc),
            ),
            ErrorCode.DEPLOY_UNKNOWN,
        )


class DeployAwsCloudFormationConvention(CloudFormationInstallationConventionBase):
    """Create or update the stack named by the deployment variables."""

    def __init__(
        self,
        client_factory: ClientFactory,
        event_logger: Optional[StackEventLogger] = None,
        config: Optional["AwsConfig"] = None,
        stream: Optional[TextIO] = None,
    ) -> None:
        super().__init__(event_logger or StackEventLogger(), stream)
        self.client_factory = client_factory
        self.poll_interval = config.poll_interval if config is not None else 5.0
        self.wait_timeout = config.wait_timeout if config is not None else None

    def install(self, deployment: RunningDeployment) -> None:
        variables = deployment.variables
        stack_name = variables.get(SpecialVariables.Aws.STACK_NAME)
        if not stack_name:
            raise DeploymentError(f"The variable {SpecialVariables.Aws.STACK_NAME} must be set")
        stack = StackArn(stack_name)
        template_body = self._read_template(deployment)
        parameters = self._parameters(variables.get(SpecialVariables.Aws.TEMPLATE_PARAMETERS))
        capabilities = variables.get_strings(SpecialVariables.Aws.IAM_CAPABILITIES)
        wait = variables.get_flag(SpecialVariables.Aws.WAIT_FOR_COMPLETION, True)

        existing = self.query_stack(self.client_factory, stack)
        if existing is not None and existing.is_in_progress():
            logger.info("Stack %s is busy (%s), waiting for it to settle", stack.name, existing.status)
            self._wait(deployment, stack, expect_success=False, missing_is_failure=False)
            existing = self.query_stack(self.client_factory, stack)

        if existing is not None and existing.status == "ROLLBACK_COMPLETE":
            # 创建失败后的栈无法更新，只能删除重建
            logger.info("Stack %s is in ROLLBACK_COMPLETE and will be deleted before it is recreated", stack.name)
            self._call("delete", lambda client: client.delete_stack(StackName=stack.value))
            self._wait(deployment, stack, expect_success=False, missing_is_failure=False)
            existing = None

        request: Dict[str, Any] = {
            "StackName": stack.value,
            "TemplateBody": template_body,
            "Parameters": parameters,
        }
        if capabilities:
            request["Capabilities"] = capabilities

        if existing is None or existing.status == "DELETE_COMPLETE":
            logger.info("Creating CloudFormation stack %s", stack.name)
            response = self._call("create", lambda client: client.create_stack(**request))
            stack_id = response.get("StackId", stack.value)
            changed = True
        else:
            logger.info("Updating CloudFormation stack %s", stack.name)
            stack_id = existing.stack_id
            changed = self._update(request)

        if changed and wait:
            self._wait(deployment, stack, expect_success=True, missing_is_failure=True)

        self.set_output_variable(deployment, "StackId", stack_id)
        if changed and not wait:
            logger.info("Not waiting for stack %s to complete, outputs may not be available yet", stack.name)
            return
        self._write_outputs(deployment, stack)

    def _call(self, action: str, operation: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return self.with_cloud_exception_handling(lambda: operation(self.client_factory()))
        except (ClientError, BotoCoreError) as exc:
            raise self.classify_deploy_error(exc, action) from exc

    def _update(self, request: Dict[str, Any]) -> bool:
        try:
            self.with_cloud_exception_handling(lambda: self.client_factory().update_stack(**request))
        except (ClientError, BotoCoreError) as exc:
            if is_no_updates(exc):
                logger.info("No updates are to be performed on stack %s", request["StackName"])
                return False
            raise self.classify_deploy_error(exc, "update") from exc
        return True

    def _wait(
        self,
        deployment: RunningDeployment,
        stack: StackArn,
        expect_success: bool,
        missing_is_failure: bool,
    ) -> None:
        stack_filter: EventFilter = lambda event: event.is_stack_event()
        wait_for_stack_completion(
            self.client_factory,
            stack,
            self.make_rollback_watcher(
                self.client_factory,
                stack,
                expect_success=expect_success,
                missing_is_failure=missing_is_failure,
                event_filter=stack_filter,
            ),
            interval=self.poll_interval,
            timeout=self.wait_timeout,
            cancellation=deployment.cancellation,
            query=lambda: self.with_cloud_exception_handling(
                lambda: get_last_stack_event(self.client_factory, stack, stack_filter)
            ),
        )

    def _write_outputs(self, deployment: RunningDeployment, stack: StackArn) -> None:
        try:
            description = self.query_stack(self.client_factory, stack)
        except PermissionException as exc:
            self.display_warning(exc.code or ErrorCode.DESCRIBE_PERMISSION, str(exc))
            return
        if description is None:
            return
        for key, value in description.outputs.items():
            self.set_output_variable(deployment, key, value)

    def _read_template(self, deployment: RunningDeployment) -> str:
        template = deployment.variables.get(SpecialVariables.Aws.TEMPLATE)
        if not template:
            raise DeploymentError(f"The variable {SpecialVariables.Aws.TEMPLATE} must be set")
        path = Path(template)
        if not path.is_absolute() and deployment.current_directory:
            path = Path(deployment.current_directory) / path
        if path.is_file():
            return path.read_text(encoding="utf-8")
        if template.lstrip().startswith(("{", "AWSTemplateFormatVersion", "Resources")):
            return template
        raise DeploymentError(f"The CloudFormation template {path} could not be found")

    @staticmethod
    def _parameters(raw: Optional[str]) -> List[Dict[str, str]]:
        if not raw or not raw.strip():
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DeploymentError(f"CloudFormation parameters are not valid JSON: {exc}") from exc
        if isinstance(payload, dict):
            return [{"ParameterKey": str(k), "ParameterValue": str(v)} for k, v in payload.items()]
        return [
            {"ParameterKey": str(item["ParameterKey"]), "ParameterValue": str(item.get("ParameterValue", ""))}
            for item in payload
        ]
