"""pacplan — deployment plan builder for policy-as-code governance environments.

Reads a declarative desired state (policy definitions, policy sets,
assignments, exemptions) and a snapshot of what is deployed, and writes
reviewable plan artifacts for a separate apply stage.
"""

__version__ = "0.4.0"
