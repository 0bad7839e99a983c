# /flowchat/config/flows.py

"""
Flow definitions as pure data (no logic).

Each flow specifies:
- category / name / description: labels for the embedding page
- partition: the knowledge partition to search and the role of its fields
- actions: the capabilities the conversation may exercise
- prompt: the default system instruction (overridable at runtime)
- translate_query / canonical_language: query normalization before embedding
- host: process ids, record field mapping, popup and dataset bindings

Only settings overrides are applied on top of this table; the registry in
flowchat.services.flow_registry turns each entry into a FlowDefinition.
"""

from typing import Dict, Any

from flowchat.config.prompts import (
    HR_SYSTEM_PROMPT,
    TOR_SYSTEM_PROMPT,
    CRM_SYSTEM_PROMPT,
    LEAVE_SYSTEM_PROMPT,
)

FlowData = Dict[str, Any]

CASE_DRAFT: Dict[str, Any] = {
    "required_fields": [
        "Case_Title",
        "Case_Type",
        "Case_Description",
        "AI_Suggestions",
        "Solution_Description",
    ],
    "choice_field": "Case_Type",
    "allowed_choices": ["Customer Service", "HR", "Legal", "Technical Support"],
    "default_choice": "Customer Service",
    "field_limits": {
        "Case_Title": 100,
        "Case_Description": 500,
        "AI_Suggestions": 300,
        "Solution_Description": 500,
    },
}

CASE_SOLUTION_SCHEMA: Dict[str, Any] = {
    "title": "CaseSolutionResponse",
    "type": "object",
    "properties": {
        "hasSimilarCase": {"type": "boolean"},
        "solution": {"type": "string"},
        "referenceCaseTitle": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "caseNumber": {"type": "string"},
                    "caseTitle": {"type": "string"},
                },
                "required": ["caseNumber", "caseTitle"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["hasSimilarCase", "solution", "referenceCaseTitle"],
    "additionalProperties": False,
}

FLOWS: Dict[str, FlowData] = {
    "HR": {
        "category": "HR",
        "name": "Human Resources",
        "description": "Organization and HR policy questions",
        "partition": {
            "collection": "HRMixlangRAG",
            "metric": "certainty",
            "id_field": "instanceID",
            "content_field": "documentDetail",
            "title_field": "requesterName",
            "metadata_fields": ["documentDescription", "requesterEmail", "documentTopic"],
        },
        "actions": ["ANSWER_ONLY"],
        "prompt": HR_SYSTEM_PROMPT,
        "translate_query": False,
        "canonical_language": "en",
        "score_threshold": 0.6,
        "suggested_prompts": [
            "What is our company vacation policy?",
            "How many sick days do employees get?",
        ],
    },
    "TOR": {
        "category": "TOR",
        "name": "Terms of Reference",
        "description": "Terms of Reference and document search",
        "partition": {
            "collection": "TORForPOC",
            "metric": "score",
            "id_field": "instanceID",
            "content_field": "documentDetail",
            "title_field": "documentTopic",
            "metadata_fields": [
                "documentDescription",
                "documentPage",
                "documentPageStart",
                "documentPageEnd",
                "totalPages",
                "source",
                "gdriveFileId",
                "createdAt",
            ],
        },
        "actions": ["ANSWER_ONLY"],
        "prompt": TOR_SYSTEM_PROMPT,
        "translate_query": True,
        "canonical_language": "th",
        "score_threshold": 0.0,  # hybrid scores are not comparable across queries
        "suggested_prompts": [
            "What are the project deliverables?",
            "What is the project timeline?",
        ],
    },
    "CRM": {
        "category": "CRM",
        "name": "Case Management",
        "description": "Case management system with knowledge base",
        "partition": {
            "collection": "CaseSolutionKnowledgeBase",
            "metric": "certainty",
            "id_field": "instanceID",
            "content_field": "solutionDescription",
            "title_field": "caseTitle",
            "metadata_fields": ["caseNumber", "caseType", "caseDescription"],
            "context_fields": ["caseNumber", "caseType"],
        },
        "actions": ["ANSWER_ONLY", "CREATE", "READ", "QUERY", "UPDATE"],
        "prompt": CRM_SYSTEM_PROMPT,
        "translate_query": True,
        "canonical_language": "th",
        "score_threshold": 0.6,
        "process_ids": ["CRM_PROCESS"],
        "record_draft": CASE_DRAFT,
        "popup_ref": "Popup_kMvLNHW_ys",
        "response_schema": CASE_SOLUTION_SCHEMA,
        "suggested_prompts": ["อุปกรณ์พัง", "ระบบล่ม", "ปัญหาการเชื่อมต่อ"],
    },
    "LEAVE": {
        "category": "Leave Request",
        "name": "Leave Request",
        "description": "Leave request handling and policy Q&A",
        "partition": {
            "collection": "LeavePolicy",
            "metric": "distance",
            "content_field": "content",
            "title_field": "title",
            "metadata_fields": ["metadata"],
        },
        "actions": ["ANSWER_ONLY", "CREATE", "READ", "QUERY"],
        "prompt": LEAVE_SYSTEM_PROMPT,
        "translate_query": False,
        "canonical_language": "en",
        "process_ids": ["Leave_Request_A57"],
        "record_field_mapping": {
            "Case_Title": "Case_Title",
            "Case_Type": "Case_Type",
            "Case_Description": "Case_Description",
            "AI_Suggestions": "AI_Suggestions",
            "Solution_Description": "Solution_Description",
            "Requester_Email": "Requester_Email",
        },
        "record_draft": {**CASE_DRAFT, "default_choice": "HR"},
        "popup_ref": "Popup_ifoiwDki9p",
        "dataset": {
            "dataset_id": "Process_With_AI_Chat_Leave_Request_Balan",
            "view_id": "leave_quota",
            "identity_field": "Employee_Email",
            "value_fields": {
                "Vacation": "Vacation_Leave_Balance",
                "Personal": "Personal_Leave_Balance",
                "Sick": "Sick_Leave_Balance",
            },
        },
        "suggested_prompts": [
            "How much leave do I have left?",
            "How do I request leave?",
            "What is the leave policy?",
        ],
    },
}
