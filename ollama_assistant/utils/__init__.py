# ollama_assistant/utils/__init__.py
# configuration snapshots, logging helpers and cancellation tokens
