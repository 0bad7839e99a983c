# /flowchat/errors.py

from typing import Optional

# Error taxonomy shared by every service. Each error carries a stable code and
# the HTTP status the API layer should answer with.


class FlowChatError(Exception):
    code = "FLOWCHAT_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConfigurationError(FlowChatError):
    code = "CONFIGURATION_ERROR"


class InvalidInput(FlowChatError):
    code = "INVALID_INPUT"
    status_code = 422


class NotInitialized(FlowChatError):
    code = "NOT_INITIALIZED"
    status_code = 409


class UnknownFlow(FlowChatError):
    code = "UNKNOWN_FLOW"
    status_code = 404

    def __init__(self, flow_key: str):
        super().__init__(f"Unknown flow: {flow_key}")
        self.flow_key = flow_key


class ActionNotPermitted(FlowChatError):
    code = "ACTION_NOT_PERMITTED"
    status_code = 403

    def __init__(self, flow_key: str, action: str):
        super().__init__(f"Action '{action}' not allowed for flow '{flow_key}'")
        self.flow_key = flow_key
        self.action = action


class RetrievalError(FlowChatError):
    code = "RETRIEVAL_ERROR"
    status_code = 502


class ProviderError(FlowChatError):
    code = "PROVIDER_ERROR"
    status_code = 502


class ValidationError(FlowChatError):
    code = "VALIDATION_ERROR"
    status_code = 422


class SdkUnavailable(FlowChatError):
    code = "SDK_UNAVAILABLE"
    status_code = 503


class SdkError(FlowChatError):
    code = "SDK_ERROR"
    status_code = 502


class IllegalTransition(FlowChatError):
    code = "ILLEGAL_TRANSITION"
    status_code = 409


class TurnInProgress(FlowChatError):
    code = "TURN_IN_PROGRESS"
    status_code = 409


class SessionNotFound(FlowChatError):
    code = "SESSION_NOT_FOUND"
    status_code = 404


class TaskNotFound(FlowChatError):
    code = "TASK_NOT_FOUND"
    status_code = 404
