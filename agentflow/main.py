# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
agentflow API - workflow execution service
Wires storage, node registry and executor into a FastAPI app.
"""
# Load environment variables from .env file (local development)
from dotenv import load_dotenv
from pathlib import Path as _PathForEnv
_env_path = _PathForEnv.cwd() / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentflow import __version__
from agentflow.api import agent
from agentflow.core.config import Config, get_config
from agentflow.core.errors import AgentFlowError
from agentflow.core.logging import get_api_logger, log_event
from agentflow.engine.executor import WorkflowExecutor
from agentflow.engine.registry import NodeRegistry
from agentflow.nodes.ai_client import AIClient
from agentflow.nodes.base import NodeDependencies
from agentflow.services.execution_service import ExecutionService
from agentflow.services.session_service import SessionService
from agentflow.storage import (
    InMemoryAccountStore,
    InMemoryExecutionRecorder,
    InMemoryKnowledgeSource,
    InMemoryWorkflowStore,
    JSONAccountStore,
    JSONExecutionRecorder,
    JSONKnowledgeSource,
    JSONWorkflowStore,
    load_model_catalog,
    load_node_type_catalog,
)

logger = get_api_logger()


def create_app(
    config: Optional[Config] = None,
    workflow_store=None,
    recorder=None,
    accounts=None,
    node_types=None,
    model_catalog=None,
    knowledge_source=None,
    ai_client: Optional[AIClient] = None,
) -> FastAPI:
    """
    Build the API app.

    Collaborators not passed in are created from config: JSON files when
    storage.backend is "file", in-memory stores otherwise. Catalogs always come
    from the YAML files named in config.
    """
    config = config or get_config()

    if config.uses_file_storage:
        workflow_store = workflow_store or JSONWorkflowStore(config.workflows_path)
        recorder = recorder or JSONExecutionRecorder(config.executions_path)
        accounts = accounts or JSONAccountStore(config.accounts_path)
        knowledge_source = knowledge_source or JSONKnowledgeSource(config.knowledge_path, config.elevated_roles)
    else:
        workflow_store = workflow_store or InMemoryWorkflowStore()
        recorder = recorder or InMemoryExecutionRecorder()
        accounts = accounts or InMemoryAccountStore()
        knowledge_source = knowledge_source or InMemoryKnowledgeSource()

    node_types = node_types or load_node_type_catalog(config.node_types_config_path)
    model_catalog = model_catalog or load_model_catalog(config.models_config_path)
    ai_client = ai_client or AIClient(timeout=config.ai_http_timeout, site_url=config.site_url)

    registry = NodeRegistry(NodeDependencies(
        ai_client=ai_client,
        model_catalog=model_catalog,
        knowledge_source=knowledge_source,
        classifier_timeout=config.classifier_http_timeout,
    ))
    executor = WorkflowExecutor(
        workflow_store=workflow_store,
        recorder=recorder,
        accounts=accounts,
        node_types=node_types,
        registry=registry,
        config=config,
    )

    app = FastAPI(
        title="agentflow",
        description="Workflow execution engine with credit accounting",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Runtime objects for dependency injection
    app.state.config = config
    app.state.executor = executor
    app.state.execution_service = ExecutionService(
        executor, recorder, node_types, elevated_roles=config.elevated_roles
    )
    app.state.session_service = SessionService(executor, timeout_seconds=config.session_timeout_seconds)

    @app.exception_handler(AgentFlowError)
    async def agentflow_error_handler(request: Request, exc: AgentFlowError):
        log_event(
            logger, "request_failed", level="WARNING",
            path=request.url.path, status_code=exc.status_code, error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.on_event("startup")
    async def startup():
        """Load persisted executions and refund reservations left by crashed runs"""
        if isinstance(recorder, JSONExecutionRecorder):
            await recorder.load()
        recovered = await executor.recover_stale_executions()
        logger.info(f"agentflow started, recovered {len(recovered)} stale executions")

    @app.on_event("shutdown")
    async def shutdown():
        await ai_client.close()

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy", "service": "agentflow"}

    app.include_router(agent.router)
    return app


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(create_app(config), host=config.service_host, port=config.service_port)
