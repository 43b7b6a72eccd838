"""Service Orchestrator (svcorch).

Lifecycle core for containerized services that live as sub-directories of a
project:
 - start / stop / build / restart through the compose CLI, one action per
   service at a time and a global cap on concurrent processes
 - status derived from the container runtime on every query
 - bounded log tails

The container runtime is the source of truth; nothing here persists service
state between calls.
"""
