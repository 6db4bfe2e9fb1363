"""
Configuration management for spamcrasher.

- **app_configuration.py**: YAML configuration loader guarded by a file lock.
  Exposes thresholds, the prompt, failure policies, timeouts and store
  settings as typed properties.

- **classifier_settings.py**: Wrapper around the ``classifier`` section
  (vendor, model, rate limit, retry budget).

- **engine_settings.py**: Merges the YAML file, command-line overrides and
  environment secrets into one frozen, validated :class:`EngineSettings`.
  Every problem is reported as a ``ConfigError`` before anything starts.
"""
