# Layer 4: Match Verifier
#
# Re-checks researched candidates against the full evidence text.
# Exports:
# - MatchVerifier: Verification LLM pass + experience policy
# - match_verifier_node: LangGraph node function
# - apply_experience_policy: Caller threshold handling

from src.layer4.match_verifier import MatchVerifier, apply_experience_policy, match_verifier_node

__all__ = [
    "MatchVerifier",
    "apply_experience_policy",
    "match_verifier_node",
]
