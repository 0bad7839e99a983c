# /flowchat/utils/metrics.py

from prometheus_client import Counter, Histogram, Gauge

# All Prometheus metrics used by the service, defined in one place.

# Conversation
turn_counter = Counter('flowchat_turns_total', 'Conversation turns processed', ['flow', 'status'])
turn_latency_histogram = Histogram('flowchat_turn_seconds', 'End-to-end turn latency in seconds', ['flow'])
active_sessions_gauge = Gauge('flowchat_active_sessions', 'Number of in-memory chat sessions')

# Upstream calls
ai_requests_counter = Counter('flowchat_ai_requests_total', 'Model provider requests', ['operation', 'status'])
retrieval_counter = Counter('flowchat_retrievals_total', 'Knowledge partition searches', ['flow', 'status'])
host_actions_counter = Counter('flowchat_host_actions_total', 'Host platform actions', ['action', 'status'])

# HTTP
response_time_histogram = Histogram('flowchat_response_time_seconds', 'Response time in seconds', ['endpoint'])
