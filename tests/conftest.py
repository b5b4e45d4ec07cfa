"""
Shared fixtures for rover-agent tests.

Keeps runtime configuration isolated from the developer's environment and
provides a small ready-made workflow.
"""

from __future__ import annotations

import pytest

from rover.config.runtime_config import reset_config
from rover.workflow import Workflow
from tests.helpers import agent_step, build_workflow

_ENV_VARS = ("ROVER_AGENT_TOOL", "ROVER_EXECUTION_MODE", "ROVER_STEP_TIMEOUT")


@pytest.fixture(autouse=True)
def isolated_runtime_config(monkeypatch):
    """Clear cached config and rover env vars around every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def three_step_workflow() -> Workflow:
    """context -> plan -> implement, each feeding the next."""
    return build_workflow(
        [
            agent_step(
                "context",
                "Gather context for {{inputs.description}}",
                [{"name": "summary", "description": "Short summary", "type": "string"}],
            ),
            agent_step(
                "plan",
                "Plan based on {{steps.context.outputs.summary}}",
                [{"name": "plan", "description": "The plan", "type": "string"}],
            ),
            agent_step(
                "implement",
                "Implement {{steps.plan.outputs.plan}} after {{steps.context.outputs.summary}}",
                [{"name": "result", "description": "Outcome", "type": "string"}],
            ),
        ],
        inputs=[{"name": "description", "description": "Task description", "type": "string", "required": True}],
    )
