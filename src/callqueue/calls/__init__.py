"""Call dispatching: drives queued items through the voice agent."""
