# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
agentflow Configuration - Single source of truth.
YAML is king. Env vars ONLY for secrets and deployment overrides.
"""

import os
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Service --
    service_host: str = "0.0.0.0"
    service_port: int = 8100

    # -- Storage --
    storage_backend: str = "memory"  # "memory" or "file"
    data_path: str = "data"
    workflows_path: str = "data/workflows"
    executions_path: str = "data/executions"
    accounts_path: str = "data/accounts"
    knowledge_path: str = "data/knowledge"
    node_types_config_path: str = "configs/node_types.yaml"
    models_config_path: str = "configs/models.yaml"

    # -- Execution --
    max_execution_seconds: float = 600.0
    stale_execution_grace_seconds: float = 300.0
    elevated_roles: Tuple[str, ...] = field(default_factory=lambda: ("super_admin",))

    # -- Conversation sessions --
    session_timeout_seconds: float = 1800.0

    # -- AI HTTP --
    ai_http_timeout: float = 120.0
    classifier_http_timeout: float = 60.0
    site_url: str = "http://localhost"

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"
    audit_log_path: Optional[str] = None

    @property
    def uses_file_storage(self) -> bool:
        return self.storage_backend == "file"


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = "configs/agentflow.yaml") -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.
    """
    if not Path(path).exists():
        return Config()

    with open(path) as f:
        y = yaml.safe_load(f) or {}

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    defaults = Config()
    data_path = get(y, "storage", "data_dir") or defaults.data_path

    return Config(
        # Service
        service_host=get(y, "service", "host") or defaults.service_host,
        service_port=int(os.getenv("AGENTFLOW_PORT", get(y, "service", "port") or defaults.service_port)),

        # Storage
        storage_backend=get(y, "storage", "backend") or defaults.storage_backend,
        data_path=data_path,
        workflows_path=get(y, "storage", "workflows") or f"{data_path}/workflows",
        executions_path=get(y, "storage", "executions") or f"{data_path}/executions",
        accounts_path=get(y, "storage", "accounts") or f"{data_path}/accounts",
        knowledge_path=get(y, "storage", "knowledge") or f"{data_path}/knowledge",
        node_types_config_path=get(y, "catalogs", "node_types") or defaults.node_types_config_path,
        models_config_path=get(y, "catalogs", "models") or defaults.models_config_path,

        # Execution
        max_execution_seconds=float(get(y, "execution", "max_seconds") or defaults.max_execution_seconds),
        stale_execution_grace_seconds=float(
            get(y, "execution", "stale_grace_seconds") or defaults.stale_execution_grace_seconds
        ),
        elevated_roles=tuple(get(y, "execution", "elevated_roles") or defaults.elevated_roles),

        # Conversation sessions
        session_timeout_seconds=float(get(y, "sessions", "timeout_seconds") or defaults.session_timeout_seconds),

        # AI HTTP
        ai_http_timeout=float(get(y, "ai", "timeouts", "default") or defaults.ai_http_timeout),
        classifier_http_timeout=float(get(y, "ai", "timeouts", "classifier") or defaults.classifier_http_timeout),
        site_url=os.getenv("SITE_URL", get(y, "ai", "site_url") or defaults.site_url),

        # Logging
        log_level=os.getenv("LOG_LEVEL", get(y, "logging", "level") or defaults.log_level),
        log_format=get(y, "logging", "format") or defaults.log_format,
        audit_log_path=get(y, "logging", "audit_file"),
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("AGENTFLOW_CONFIG_PATH", "configs/agentflow.yaml")
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
