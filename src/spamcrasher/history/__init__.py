"""
Trust history bootstrap.

- **history_importer.py**: Loads a Telegram Desktop JSON export or a
  ``user_id[,count[,channel_id]]`` text file into an empty trust store using
  the store's own increment primitive. Failures are logged and never stop
  the engine from starting.
"""
