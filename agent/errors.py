class AgentRunError(RuntimeError):
    """The agent run itself failed, e.g. the upstream model errored."""
