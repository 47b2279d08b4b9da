from prometheus_client import Counter, Gauge, Histogram

poll_duration_seconds = Histogram('poll_duration_seconds', 'Duration of a full monitoring cycle')
poll_errors_total = Counter('poll_errors_total', 'Number of failed channel checks')
last_poll_timestamp = Gauge('last_poll_timestamp', 'Unix timestamp of last completed cycle')

fetch_requests_total = Counter('fetch_requests_total', 'Outbound fetches by final outcome', ['outcome'])
fetch_retries_total = Counter('fetch_retries_total', 'Fetch attempts retried after a transient failure')
fetch_rate_limited_total = Counter('fetch_rate_limited_total', 'Responses with HTTP 429')

events_emitted_total = Counter('events_emitted_total', 'Lifecycle events emitted', ['kind'])
items_pruned_total = Counter('items_pruned_total', 'Items removed by retention cleanup')
live_items_retired_total = Counter('live_items_retired_total', 'Stale live items retired after a probe')

channels_total = Gauge('channels_total', 'Total number of channels monitored')
live_items = Gauge('live_items', 'Items currently flagged as live')
