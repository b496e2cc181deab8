"""Mid-call tool registry and executor."""
