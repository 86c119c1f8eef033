"""Configuration loading utilities for deploy-agent."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")


@dataclass
class AwsConfig:
    """Settings for the CloudFormation client and stack polling."""

    region: Optional[str] = None
    profile: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    poll_interval: float = 5.0      # 轮询栈事件的间隔（秒）
    wait_timeout: float = 3600.0    # 等待栈完成的总超时（秒）


@dataclass
class ProcessConfig:
    """Settings for spawned tools."""

    timeout: Optional[float] = 1800.0
    poll_interval: float = 0.1


@dataclass
class PackagesConfig:
    """Settings for package extraction."""

    staging_root: str = ".deploy-agent/staging"
    java_home: Optional[str] = None
    jar_binary: Optional[str] = None


@dataclass
class ServerConfig:
    """Where decoded service messages are forwarded to."""

    url: Optional[str] = None
    token: Optional[str] = None
    proxy: Optional[str] = None
    deployment_id: Optional[str] = None
    timeout: float = 10.0
    max_retries: int = 3
    retry_backoff: float = 1.0


@dataclass
class AppConfig:
    """Top-level configuration."""

    aws: AwsConfig = field(default_factory=AwsConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)
    packages: PackagesConfig = field(default_factory=PackagesConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def section(name: str) -> Dict[str, Any]:
            values = payload.get(name, {}) or {}
            # 过滤掉以下划线开头的注释字段
            return {k: v for k, v in values.items() if not k.startswith("_")}

        return cls(
            aws=AwsConfig(**{**AwsConfig().__dict__, **section("aws")}),
            process=ProcessConfig(**{**ProcessConfig().__dict__, **section("process")}),
            packages=PackagesConfig(**{**PackagesConfig().__dict__, **section("packages")}),
            server=ServerConfig(**{**ServerConfig().__dict__, **section("server")}),
        )


def _apply_environment(config: AppConfig) -> AppConfig:
    env_region = os.getenv("DEPLOY_AGENT_AWS_REGION") or os.getenv("AWS_REGION")
    if env_region:
        config.aws.region = env_region

    env_profile = os.getenv("DEPLOY_AGENT_AWS_PROFILE")
    if env_profile:
        config.aws.profile = env_profile

    env_poll = os.getenv("DEPLOY_AGENT_AWS_POLL_INTERVAL")
    if env_poll:
        config.aws.poll_interval = float(env_poll)

    env_wait = os.getenv("DEPLOY_AGENT_AWS_WAIT_TIMEOUT")
    if env_wait:
        config.aws.wait_timeout = float(env_wait)

    env_java_home = os.getenv("DEPLOY_AGENT_JAVA_HOME") or os.getenv("JAVA_HOME")
    if env_java_home and not config.packages.java_home:
        config.packages.java_home = env_java_home

    env_server = os.getenv("DEPLOY_AGENT_SERVER_URL")
    if env_server:
        config.server.url = env_server

    env_token = os.getenv("DEPLOY_AGENT_SERVER_TOKEN")
    if env_token:
        config.server.token = env_token

    env_proxy = os.getenv("DEPLOY_AGENT_SERVER_PROXY")
    if env_proxy:
        config.server.proxy = env_proxy

    env_deployment = os.getenv("DEPLOY_AGENT_DEPLOYMENT_ID")
    if env_deployment:
        config.server.deployment_id = env_deployment

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - DEPLOY_AGENT_AWS_REGION or AWS_REGION: CloudFormation region
    - DEPLOY_AGENT_AWS_PROFILE: named AWS profile
    - DEPLOY_AGENT_AWS_POLL_INTERVAL / DEPLOY_AGENT_AWS_WAIT_TIMEOUT: stack polling
    - DEPLOY_AGENT_JAVA_HOME or JAVA_HOME: JDK used by the jar extractor
    - DEPLOY_AGENT_SERVER_URL / DEPLOY_AGENT_SERVER_TOKEN: message forwarding target
    - DEPLOY_AGENT_SERVER_PROXY: HTTP proxy for forwarding
    - DEPLOY_AGENT_DEPLOYMENT_ID: deployment id attached to forwarded messages

    When no path is given and the default file is absent, defaults are used.
    """

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            return _apply_environment(AppConfig.from_dict(data))

    if path:
        raise FileNotFoundError(
            f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
        )
    return _apply_environment(AppConfig())
