"""
Parent-to-child cascading.

Child accounts never enter the optimization; their revenue is already
rolled into the parent. After proposals are built, each child inherits its
parent's rep and scores but keeps its own current owner.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from book_optimizer.models.enums import AssignmentSource
from book_optimizer.models.schemas import Account, AssignmentProposal


logger = logging.getLogger(__name__)


def cascade_to_children(
    proposals: Sequence[AssignmentProposal],
    accounts: Sequence[Account],
    child_names: Optional[Mapping[str, str]] = None,
    child_owners: Optional[Mapping[str, str]] = None,
) -> List[AssignmentProposal]:
    """
    Append one proposal per child account, following its parent.

    Child proposals carry zero revenue so that loads derived from the full
    proposal list do not count the hierarchy twice.

    Args:
        proposals: Parent-level proposals.
        accounts: Parent accounts (with child_ids).
        child_names: Optional display names for children.
        child_owners: Current owner of each child, when it has one. A child
            never takes its parent's owner as its own.

    Returns:
        List[AssignmentProposal]: Parent proposals followed by child proposals.
    """
    child_names = child_names or {}
    child_owners = child_owners or {}
    children: Dict[str, List[str]] = {account.id: account.child_ids for account in accounts}
    result = list(proposals)
    seen = {proposal.account_id for proposal in proposals}

    for parent in proposals:
        for child_id in children.get(parent.account_id, []):
            if child_id in seen:
                continue
            seen.add(child_id)
            result.append(parent.model_copy(update={
                "account_id": child_id,
                "account_name": child_names.get(child_id) or f"Child of {parent.account_name}",
                "current_owner_id": child_owners.get(child_id),
                "source": AssignmentSource.CASCADED,
                "lock_type": None,
                "rationale": (
                    f"Child follows parent → {parent.proposed_rep_name or parent.proposed_rep_id} "
                    f"(inherited from {parent.account_name or parent.account_id})"
                ),
                "parent_account_id": parent.account_id,
                "arr": 0.0,
                "atr": 0.0,
                "pipeline": 0.0,
                "tier": None,
            }))

    cascaded = len(result) - len(proposals)
    if cascaded:
        logger.info(f"Cascaded {cascaded} child accounts to their parents' reps")
    return result
