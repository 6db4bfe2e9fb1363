"""
Runtime services around the decision engine.

- **moderation_service.py**: Bounded-concurrency run loop from a message
  source to a decision sink.

- **jsonl_transport.py**: JSON-lines message source (stdin) and decision
  sink (stdout).
"""
