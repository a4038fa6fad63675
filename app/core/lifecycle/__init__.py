"""Service resource lifecycle: operation state, actions, jobs and the orchestrator."""
