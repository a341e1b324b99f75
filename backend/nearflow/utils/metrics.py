# /nearflow/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used by the flow engine.
# Centralizing them here makes them easy to find and manage.

# Engine
events_counter = Counter('flow_events_total', 'Inbound events handled', ['outcome'])
transitions_counter = Counter('flow_transitions_total', 'Committed step transitions', ['flow_id', 'result'])
interruptions_counter = Counter('flow_interruptions_total', 'Global command interruptions', ['command', 'status'])
version_conflicts_counter = Counter('session_version_conflicts_total', 'Optimistic concurrency conflicts', ['source'])
handler_latency_histogram = Histogram('flow_handler_seconds', 'Flow handler processing time', ['flow_id'])

# Sweeper
sessions_expired_counter = Counter('sessions_expired_total', 'Sessions force-expired by the sweeper', ['flow_id'])
sweep_runs_counter = Counter('session_sweeps_total', 'Sweeper runs', ['status'])

# Persistence
store_operations_counter = Counter('session_store_operations_total', 'Session store operations', ['operation', 'status'])

# HTTP
response_time_histogram = Histogram('http_request_duration_seconds', 'HTTP request duration', ['endpoint'])
