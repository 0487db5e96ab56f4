"""CRM assistant: tool registry, agent loop and MCP message handling.

All tools act through the record mutation pipeline as AI_AGENT.
"""
