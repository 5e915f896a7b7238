"""HTTP surface: advisor sessions, SSE streaming, health."""
