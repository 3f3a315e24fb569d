"""
steadykey CLI

Commands:
- steadykey key - Print the idempotency id of a JSON payload
- steadykey canonical - Print the canonical form of a JSON payload
- steadykey version - Show version information
"""
