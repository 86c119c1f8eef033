"""High-level workflow: build the convention list for a request and run it."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .aws import DeployAwsCloudFormationConvention, StackEventLogger, WarningLedger, create_client_factory
from .aws.cloudformation import ClientFactory
from .config import AppConfig
from .conventions import (
    ContributeVariablesConvention,
    ConventionProcessor,
    ExtractPackageToStagingDirectoryConvention,
    InstallConvention,
)
from .deployment import RunningDeployment
from .packages import create_extractor
from .processes import HttpMessageForwarder, QueuedMessageForwarder, StdoutMessageForwarder
from .processes.command_output import MessageForwarder
from .utils.logging import get_logger
from .variables import SpecialVariables, VariableDictionary

logger = get_logger(__name__)


@dataclass
class DeploymentRequest:
    """Package and variables captured from the CLI."""

    package_path: Optional[str]
    variables: VariableDictionary
    overrides: Dict[str, str] = field(default_factory=dict)
    staging_root: Optional[str] = None


class DeploymentWorkflow:
    """Assembles the conventions for one deployment and runs them."""

    def __init__(
        self,
        config: AppConfig,
        client_factory: Optional[ClientFactory] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> None:
        self.config = config
        self.client_factory = client_factory
        self.cancellation = cancellation or threading.Event()
        self._forward: Optional[MessageForwarder] = None

    def _forwarder(self) -> MessageForwarder:
        if self._forward is None:
            if self.config.server.url:
                # HTTP 重试不能阻塞读取子进程输出的线程
                self._forward = QueuedMessageForwarder(HttpMessageForwarder(self.config.server))
            else:
                self._forward = StdoutMessageForwarder()
        return self._forward

    def _close_forwarder(self) -> None:
        forward, self._forward = self._forward, None
        if isinstance(forward, QueuedMessageForwarder):
            forward.close()

    def build_conventions(self, request: DeploymentRequest, deployment: RunningDeployment) -> List[InstallConvention]:
        conventions: List[InstallConvention] = [ContributeVariablesConvention(request.overrides)]

        if request.package_path:
            extractor = create_extractor(
                deployment.variables,
                self.config,
                forward=self._forwarder(),
                cancellation=self.cancellation,
            )
            conventions.append(
                ExtractPackageToStagingDirectoryConvention(
                    extractor,
                    request.staging_root or self.config.packages.staging_root,
                )
            )

        stack_name = request.overrides.get(SpecialVariables.Aws.STACK_NAME) or deployment.variables.get(
            SpecialVariables.Aws.STACK_NAME
        )
        if stack_name:
            region = deployment.variables.get(SpecialVariables.Aws.REGION)
            if region and not self.config.aws.region:
                self.config.aws.region = region
            conventions.append(
                DeployAwsCloudFormationConvention(
                    self.client_factory or create_client_factory(self.config.aws),
                    StackEventLogger(WarningLedger()),
                    self.config.aws,
                )
            )
        return conventions

    def run(self, request: DeploymentRequest) -> RunningDeployment:
        """Run the deployment; failures propagate after being recorded on the deployment."""
        deployment = RunningDeployment(request.package_path, request.variables, self.cancellation)
        conventions = self.build_conventions(request, deployment)
        logger.info("Running %d conventions", len(conventions))
        try:
            ConventionProcessor(deployment, conventions).run()
        finally:
            self._close_forwarder()
        logger.info("Deployment completed")
        return deployment
