# /chatflow/utils/metrics.py

from prometheus_client import Counter, Histogram

# All Prometheus metrics emitted by the conversation engine.

# Routing
messages_counter = Counter('chatflow_messages_total', 'Inbound messages by route taken', ['route'])
handle_message_histogram = Histogram('chatflow_handle_message_seconds', 'Time spent producing a reply')

# Flows
flow_exits_counter = Counter('chatflow_flow_exits_total', 'Flow instances ended', ['outcome'])
action_results_counter = Counter('chatflow_action_results_total', 'Action outcomes', ['action', 'status'])

# External dependencies
llm_requests_counter = Counter('chatflow_llm_requests_total', 'Language model requests', ['status'])

# Sessions and transport
sessions_evicted_counter = Counter('chatflow_sessions_evicted_total', 'Idle sessions evicted')
fallback_replies_counter = Counter('chatflow_fallback_replies_total', 'Replies produced by the transport fallback', ['reason'])
