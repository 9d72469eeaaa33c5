"""HTTP API: intake webhook, post-call webhook, queue administration."""
