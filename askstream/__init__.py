"""
askstream - Conversational AI Gateway

Streams answers from hosted, self-hosted and agentic LLM backends to clients
over a single server-sent events connection, with tag-aware parsing, paced
delivery and cold-start retry.
"""

__version__ = "1.0.0"
__author__ = "askstream"
