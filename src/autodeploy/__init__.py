"""Autodeploy: a self-updating deployment agent.

Checks a git branch for new commits on every scheduled invocation and,
when something changed (or nothing is running), rebuilds and restarts
the docker compose application checked out from it.
"""

__version__ = "0.1.0"
