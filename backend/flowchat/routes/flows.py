# /flowchat/routes/flows.py

from fastapi import APIRouter

from flowchat.config.settings import settings
from flowchat.models.api import APIResponse
from flowchat.models.flow import FlowDefinition
from flowchat.services.flow_registry import flow_registry

router = APIRouter(prefix="/flows", tags=["Flows"])


def _flow_summary(flow: FlowDefinition) -> dict:
    return {
        "key": flow.key,
        "name": flow.name,
        "category": flow.category,
        "description": flow.description,
        "permitted_actions": sorted(action.value for action in flow.permitted_actions),
        "has_retrieval": flow.has_retrieval,
        "suggested_prompts": list(flow.suggested_prompts),
        "prompt_id": flow.prompt_id,
    }


@router.get("", response_model=APIResponse)
async def list_flows():
    """Every configured flow, in registry order, for the flow picker."""
    return APIResponse(
        success=True,
        message="Flows retrieved.",
        data={"flows": [_flow_summary(flow) for flow in flow_registry.list_flows()]},
        version=settings.api_version,
    )


@router.get("/{flow_key}", response_model=APIResponse)
async def get_flow(flow_key: str):
    flow = flow_registry.resolve(flow_key)
    return APIResponse(
        success=True,
        message="Flow retrieved.",
        data={"flow": _flow_summary(flow)},
        version=settings.api_version,
    )
