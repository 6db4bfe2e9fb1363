"""
Spam Crasher - moderation decision engine for group chats

Spam Crasher decides for every incoming chat message whether it is spam.
Messages from established users pass straight through; messages from new
users are scored by an AI text classifier and flagged (or suppressed) above
a configured threshold.

Core Components:

- **Trust Store**: Durable per-user interaction counters (SQLite, Redis or
  in-memory) with an atomic increment shared by every engine instance
- **Classifier Providers**: OpenAI and Anthropic variants behind one
  interface, with token-bucket rate limiting and retries with backoff
- **Decision Engine**: Whitelist, new-user gate and threshold policy, with
  configurable fail-open / fail-closed behaviour when a dependency fails
- **History Importer**: One-shot bootstrap of the trust store from a chat
  export when the store is empty

Usage:
    from spamcrasher.main import main
    main()  # Reads JSON-lines messages on stdin, writes decisions to stdout
"""
