"""Key-value storage backends for client-local state."""
