# Lifecycle board: student/client tracking across fixed lifecycle columns
#
# Components:
#   schema.py      - Column schema + data model (Entity, Column, BoardSnapshot, Note)
#   errors.py      - Error taxonomy shared by every layer
#   seed.py        - Built-in default board
#   persistence.py - Key/value persistence adapters (SQLite, in-memory) with change notification
#   store.py       - BoardStore: snapshot owner, mutations, read views
#   guard.py       - TransitionGuard: two-phase moves that need extra data (churn/pause/resume)
#   projection.py  - Per-team filtered views
#   sync.py        - Cross-view synchronizer (debounced reload on remote change)
#   watcher.py     - Filesystem watch on the SQLite file for cross-process changes
#   billing.py     - Payment status collaborator client
#   session.py     - Presentation boundary (drag_end / confirm / cancel intents)
#   config.py      - YAML configuration
