"""
Ollama Relay - WebSocket relay for streamed text generation.
"""

__version__ = "0.1.0"
