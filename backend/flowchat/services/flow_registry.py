# /flowchat/services/flow_registry.py

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple, Any

from flowchat.config.flows import FLOWS
from flowchat.config.settings import settings, Settings
from flowchat.errors import ConfigurationError, UnknownFlow
from flowchat.models.flow import (
    Action,
    DatasetBinding,
    FlowDefinition,
    PartitionSpec,
    RecordDraftSpec,
)

# The registry is built once at import time from the static flow table plus
# settings overrides, and is read-only afterwards. Sessions in any number of
# requests share it without locking.

logger = logging.getLogger(__name__)


class FlowRegistry:
    def __init__(self, flows: Iterable[FlowDefinition]):
        self._flows: Dict[str, FlowDefinition] = {}
        for flow in flows:
            if flow.key in self._flows:
                raise ConfigurationError(f"Duplicate flow key: {flow.key}")
            self._flows[flow.key] = flow

    def resolve(self, flow_key: str) -> FlowDefinition:
        """Returns the flow for the key or raises UnknownFlow."""
        flow = self._flows.get(flow_key)
        if flow is None:
            raise UnknownFlow(flow_key)
        return flow

    def is_action_permitted(self, flow_key: str, action) -> bool:
        """Guard used before any mutating call. Never raises."""
        try:
            flow = self.resolve(flow_key)
            return Action(action) in flow.permitted_actions
        except (UnknownFlow, ValueError):
            return False

    def list_flows(self) -> Tuple[FlowDefinition, ...]:
        return tuple(self._flows.values())

    def suggested_prompts(self, flow_key: str) -> Tuple[str, ...]:
        return self.resolve(flow_key).suggested_prompts

    def __contains__(self, flow_key: str) -> bool:
        return flow_key in self._flows

    def __len__(self) -> int:
        return len(self._flows)


def _check_override_keys(name: str, overrides: Mapping[str, Any], known: Iterable[str]):
    unknown = sorted(set(overrides) - set(known))
    if unknown:
        raise ConfigurationError(f"{name} references unknown flow keys: {', '.join(unknown)}")


def build_flow_definition(key: str, data: Mapping[str, Any], config: Settings) -> FlowDefinition:
    partition: Optional[PartitionSpec] = None
    if data.get("partition"):
        partition_data = dict(data["partition"])
        if key in config.weaviate_classes:
            partition_data["collection"] = config.weaviate_classes[key]
        partition = PartitionSpec(**partition_data)

    prompt_template = data["prompt"]
    prompt_id = f"{key}:default"
    if key in config.flow_prompt_overrides:
        prompt_template = config.flow_prompt_overrides[key]
        prompt_id = f"{key}:override"

    score_threshold = config.weaviate_score_thresholds.get(
        key, data.get("score_threshold", config.weaviate_score_threshold)
    )

    process_ids = tuple(pid for pid in data.get("process_ids", []) if pid)
    if key in config.kissflow_process_ids and config.kissflow_process_ids[key]:
        process_ids = (config.kissflow_process_ids[key],)

    return FlowDefinition(
        key=key,
        category=data["category"],
        name=data["name"],
        description=data.get("description", ""),
        retrieval_partition=partition,
        permitted_actions=frozenset(Action(a) for a in data.get("actions", ["ANSWER_ONLY"])),
        prompt_template=prompt_template,
        prompt_id=prompt_id,
        translate_query_before_embedding=data.get("translate_query", False),
        canonical_language=data.get("canonical_language", "en"),
        suggested_prompts=tuple(data.get("suggested_prompts", [])),
        retrieval_limit=data.get("retrieval_limit", config.weaviate_top_k),
        max_documents=data.get("max_documents", 5),
        score_threshold=score_threshold,
        host_process_ids=process_ids,
        record_field_mapping=data.get("record_field_mapping", {}),
        record_draft=RecordDraftSpec(**data["record_draft"]) if data.get("record_draft") else None,
        popup_ref=data.get("popup_ref"),
        dataset=DatasetBinding(**data["dataset"]) if data.get("dataset") else None,
        response_schema=data.get("response_schema"),
    )


def build_flow_registry(config: Settings, flows: Optional[Mapping[str, Mapping[str, Any]]] = None) -> FlowRegistry:
    """
    Builds the registry from the static table and the settings overrides.

    Overrides that mention a flow key the table does not define are a
    configuration error and abort startup.
    """
    table = FLOWS if flows is None else flows
    _check_override_keys("WEAVIATE_CLASSES", config.weaviate_classes, table)
    _check_override_keys("WEAVIATE_SCORE_THRESHOLDS", config.weaviate_score_thresholds, table)
    _check_override_keys("KISSFLOW_PROCESS_IDS", config.kissflow_process_ids, table)
    _check_override_keys("FLOW_PROMPT_OVERRIDES", config.flow_prompt_overrides, table)

    definitions = []
    for key, data in table.items():
        try:
            definitions.append(build_flow_definition(key, data, config))
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid definition for flow {key}: {e}") from e

    logger.info(f"Flow registry loaded with {len(definitions)} flows: {', '.join(table)}")
    return FlowRegistry(definitions)


# Globally accessible instance
flow_registry = build_flow_registry(settings)
