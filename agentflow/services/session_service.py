# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Conversation Session Service

Multi-turn trial conversations against a workflow. Each session keeps its
message history in memory and feeds it to the run as input.messages, so llm
and classifier nodes see the earlier turns. Idle sessions expire.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from agentflow.core.errors import ForbiddenError, NotFoundError, ValidationError
from agentflow.core.logging import get_service_logger, log_event
from agentflow.engine.executor import WorkflowExecutor

logger = get_service_logger("sessions")

DEFAULT_SESSION_TIMEOUT = 30 * 60


@dataclass
class ConversationSession:
    """One trial conversation with a workflow"""
    session_id: str
    workflow_id: str
    user_id: str
    created_at: float
    last_active_at: float
    messages: List[Dict[str, str]] = field(default_factory=list)

    def add_message(self, role: str, content: str, now: float) -> None:
        self.messages.append({"role": role, "content": content})
        self.last_active_at = now


def extract_reply_text(output: Any) -> str:
    """
    Plain reply text from a normalized run output.

    Looks at result, content, output, text and message in that order and
    falls back to JSON for anything else.
    """
    if output is None or output == "":
        return "No response"
    if isinstance(output, str):
        return output
    if not isinstance(output, dict):
        return str(output)

    if "result" in output:
        result = output["result"]
        if isinstance(result, dict):
            return extract_reply_text(result)
        if isinstance(result, list):
            return json.dumps(result, ensure_ascii=False)
        return "No response" if result is None else str(result)

    if "content" in output:
        return str(output["content"])
    if "output" in output:
        return extract_reply_text(output["output"])
    for key in ("text", "message"):
        if key in output:
            return str(output[key])

    if set(output) == {"type"}:
        return "Done"

    logger.warning("Could not extract reply text, returning JSON")
    return json.dumps(output, ensure_ascii=False)


class SessionService:
    """
    Manages in-memory conversation sessions.

    Responsibilities:
    - Create sessions for the workflow owner
    - Run one workflow execution per message with the prior turns as history
    - Expire idle sessions
    """

    def __init__(
        self,
        executor: WorkflowExecutor,
        timeout_seconds: float = DEFAULT_SESSION_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.sessions: Dict[str, ConversationSession] = {}

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def create_session(self, workflow_id: str, user_id: str) -> Dict[str, str]:
        """Open a session on a workflow the caller owns"""
        self.clean_expired()

        workflow = await self.executor.workflow_store.find_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        if workflow.user_id != user_id:
            raise ForbiddenError("Not allowed to access this workflow", resource="workflow")

        now = self.clock()
        session_id = f"session_{workflow_id}_{uuid.uuid4().hex[:12]}"
        self.sessions[session_id] = ConversationSession(
            session_id=session_id,
            workflow_id=workflow_id,
            user_id=user_id,
            created_at=now,
            last_active_at=now,
        )
        log_event(logger, "session_created", session_id=session_id, workflow_id=workflow_id, user_id=user_id)
        return {"session_id": session_id, "workflow_id": workflow_id}

    def get_session(self, session_id: str) -> Optional[ConversationSession]:
        """Live session, or None when missing or expired"""
        session = self.sessions.get(session_id)
        if session is None:
            return None
        if self.clock() - session.last_active_at > self.timeout_seconds:
            del self.sessions[session_id]
            logger.info(f"Session expired: {session_id}")
            return None
        return session

    def delete_session(self, workflow_id: str, session_id: str, user_id: str) -> Dict[str, str]:
        self._require_session(workflow_id, session_id, user_id)
        del self.sessions[session_id]
        log_event(logger, "session_deleted", session_id=session_id, user_id=user_id)
        return {"message": f"Session '{session_id}' deleted"}

    def clean_expired(self) -> int:
        """Drop idle sessions. Returns the number removed."""
        now = self.clock()
        expired = [
            session_id for session_id, session in self.sessions.items()
            if now - session.last_active_at > self.timeout_seconds
        ]
        for session_id in expired:
            del self.sessions[session_id]
        if expired:
            logger.info(f"Cleaned {len(expired)} expired sessions")
        return len(expired)

    def _require_session(self, workflow_id: str, session_id: str, user_id: str) -> ConversationSession:
        session = self.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        if session.user_id != user_id:
            raise ForbiddenError("Not allowed to access this session", resource="session")
        if session.workflow_id != workflow_id:
            raise ValidationError("Session does not belong to this workflow", field="session_id")
        return session

    # ========================================================================
    # Messages
    # ========================================================================

    async def send_message(
        self,
        workflow_id: str,
        session_id: str,
        message: str,
        user_id: str,
        group_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run the workflow for one user message.

        The turn is only added to the history once the run succeeds, so a
        failed run can be retried without duplicating the question.
        """
        if not message or not message.strip():
            raise ValidationError("Message must not be empty", field="message")
        session = self._require_session(workflow_id, session_id, user_id)

        result = await self.executor.execute_workflow(
            workflow_id,
            user_id,
            {"query": message, "messages": list(session.messages)},
            group_id=group_id,
            user_role=user_role,
        )
        reply = extract_reply_text(result.output)

        now = self.clock()
        session.add_message("user", message, now)
        session.add_message("assistant", reply, now)

        log_event(
            logger, "session_message_answered",
            session_id=session_id, execution_id=result.execution_id, credits_used=result.credits.used,
        )
        return {
            "message": {"role": "assistant", "content": reply},
            "execution_id": result.execution_id,
            "credits": result.credits.model_dump(),
            "message_count": len(session.messages),
        }

    def get_history(self, workflow_id: str, session_id: str, user_id: str) -> Dict[str, Any]:
        session = self._require_session(workflow_id, session_id, user_id)
        return {
            "session_id": session_id,
            "workflow_id": workflow_id,
            "messages": list(session.messages),
            "message_count": len(session.messages),
        }
