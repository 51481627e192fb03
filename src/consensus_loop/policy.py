"""Policy engine mapping a synthesized finding to an action.

Rules, first match wins:

1. No fix -> ESCALATE, whatever the severity or agreement.
2. HIGH or CRITICAL -> AUTO_APPLY.
3. At least one other reviewer raised it this round -> AUTO_APPLY.
4. It matches a finding deferred in an earlier round -> AUTO_APPLY.
5. Otherwise -> DEFER.
"""

from dataclasses import dataclass

from consensus_loop.models.findings import Action, ApplyTrigger, Finding


@dataclass(frozen=True)
class PolicyDecision:
    """Action chosen for a finding and, for AUTO_APPLY, the rule that fired."""

    action: Action
    trigger: ApplyTrigger | None = None


def evaluate(finding: Finding, same_round_matches: int, registry_match: bool) -> PolicyDecision:
    """Apply the policy rules and report which one fired."""
    if not finding.has_fix:
        return PolicyDecision(Action.ESCALATE)

    if finding.severity.is_high_stakes:
        return PolicyDecision(Action.AUTO_APPLY, ApplyTrigger.SEVERITY)

    if same_round_matches >= 1:
        return PolicyDecision(Action.AUTO_APPLY, ApplyTrigger.SAME_ROUND)

    if registry_match:
        return PolicyDecision(Action.AUTO_APPLY, ApplyTrigger.CROSS_ROUND)

    return PolicyDecision(Action.DEFER)


def classify(finding: Finding, same_round_matches: int, registry_match: bool) -> Action:
    """Pure classification of a finding into AUTO_APPLY, DEFER or ESCALATE.

    Args:
        finding: Representative finding for a same-round group
        same_round_matches: Other reviewers that raised a matching finding this round
        registry_match: Whether a matching finding was deferred in an earlier round

    Returns:
        The action to take
    """
    return evaluate(finding, same_round_matches, registry_match).action
