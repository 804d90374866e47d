"""Rate limiting key utilities."""


def build_rl_key(*, policy: str, actor: str) -> str:
    """
    Build the counter key for an actor under a named policy.
    Format: rl:{policy}:{actor}
    - Strip both inputs and lower the policy name.
    - Replace ':' and whitespace inside either input with '_' so the
      actor can never spill into another key segment.
    """
    normalized_policy = "_".join(policy.strip().lower().replace(":", "_").split())
    normalized_actor = "_".join(actor.strip().replace(":", "_").split())

    return f"rl:{normalized_policy}:{normalized_actor or 'anonymous'}"
