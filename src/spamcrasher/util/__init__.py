"""
Utility helpers for spamcrasher.

- **logger.py**: Centralized logging configuration with coloured console output
  (written to stderr through prompt_toolkit), a rotating per-session log file
  and suppression of noisy client libraries (httpx, openai, anthropic, redis).
"""
