# Learn Vanguard task workflow client
#
# Components:
#   schema.py    - Data model (Task, TaskStatus, StatusChangeIntent) and status mapper
#   errors.py    - Exception taxonomy and error message extraction
#   events.py    - Typed event bus for API-level signals (auth, timeout, 5xx)
#   storage.py   - Persisted bearer token
#   config.py    - Client configuration (YAML + environment)
#   transport.py - HTTP transport and middleware chain (auth, retry, error events)
#   client.py    - JSON API client on top of the transport chain
#   task_api.py  - Task endpoints of the REST backend
#   notify.py    - Toast notifications
#   query.py     - Cached task queries and mutations
#   board.py     - Kanban board, drag-and-drop intents, confirmations
