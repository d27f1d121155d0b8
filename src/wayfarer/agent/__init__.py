"""Agent runtime: events, hooks, reliability and ReAct execution.

The Agent orchestrator lives in ``wayfarer.agent.orchestrator``; it is not
re-exported here so that subpackages can import each other freely.
"""
