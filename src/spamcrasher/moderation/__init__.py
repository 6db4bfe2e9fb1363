"""
Moderation policy and decisions.

- **channel_policy.py**: Immutable whitelist of channels that are never
  moderated, parsed from configuration.

- **decision_engine.py**: Per-message state machine combining the channel
  whitelist, the trust store counter, the new-user gate and the classifier
  score into an allow / flag / suppress decision.
"""
