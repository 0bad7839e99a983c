# /flowchat/utils/request_utils.py
from fastapi import Request


def get_client_key(request: Request) -> str:
    """
    Rate-limit key for a request: the chat session when the path carries one,
    otherwise the client's IP address.
    """
    session_id = request.path_params.get("session_id") if request.path_params else None
    if session_id:
        return f"session:{session_id}"
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"
