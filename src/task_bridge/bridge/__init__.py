"""Bridge between the shared task store and the coding agent CLI.

Modules:

- ``repository`` reads queued tasks and persists status and log writes.
- ``transitions`` owns the legal automation-status edges.
- ``backend`` spawns and supervises one agent process per task.
- ``handlers`` turn a task into a session request and its result into updates.
- ``dispatcher`` polls on a timer and keeps at most one task in flight.

A single bridge process handles one task at a time. Running several bridges
against one store is not coordinated.
"""
