"""Rollforge notification routing: delivers terminal rollout notifications.

When a run reaches a terminal state, one ``RolloutNotification`` carrying
``(status, environment, revision_identifier)`` is fanned out to every
configured sink: a local JSONL log, an SNS topic, or any object
implementing the ``BaseSink`` protocol.  A sink failure never changes the
rollout's outcome.
"""
