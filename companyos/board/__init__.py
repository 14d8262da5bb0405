# Board core: dynamic workflow columns, tasks and drag reconciliation
#
# Components:
#   schema.py     - Data model (StatusColumn, Task, TaskDraft, TaskPriority)
#   errors.py     - BoardError hierarchy
#   backend.py    - Backend contract + PostgREST client
#   local.py      - SQLite implementation of the backend contract
#   events.py     - Event bridge for front-end notifications
#   statuses.py   - Status registry and column administration
#   store.py      - Task store adapter (CRUD + joins)
#   projection.py - Group tasks into columns
#   drag.py       - Optimistic moves reconciled by resync
#   session.py    - BoardSession, the handle a front end holds
#   assist.py     - LLM task-assist prompts and client
