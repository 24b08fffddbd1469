"""
Group Distribution - balanced partition of teams into groups.

Distributes N teams across G groups with at most 1 team difference between groups.
No empty groups when teams exist. Works for any N >= 1.
Pure: no session, no randomness (callers pre-shuffle the team list).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from progression.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class DistributionValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


# ============================================================================
# Distribution
# ============================================================================


def effective_group_count(team_count: int, number_of_groups: int, has_opening_pair: bool = False) -> int:
    """
    Compute how many groups will actually be created.

    Rules:
    - Never more groups than teams (no empty groups): G = min(N, requested)
    - With an opening pair, group 1 starts with two teams, so G is capped at N - 1
      to keep every group non-empty and the size spread <= 1

    Examples:
    - N=10, G=4 → 4
    - N=3,  G=4 → 3
    - N=4,  G=4, opening pair → 3
    """
    groups = min(team_count, number_of_groups)
    if has_opening_pair and team_count >= 2:
        groups = min(groups, team_count - 1)
    return max(1, groups)


def distribute_teams(
    team_ids: Sequence[int],
    number_of_groups: int,
    opening_team_a_id: Optional[int] = None,
    opening_team_b_id: Optional[int] = None,
) -> Dict[int, List[int]]:
    """
    Distribute team IDs across groups evenly.

    Without opening teams: team[i] → group (i % G) + 1.
    With opening teams: both go to group 1, then each remaining team fills
    the currently smallest group (ties → lowest group index).

    Examples:
    - N=10, G=4 → sizes [3, 3, 2, 2]
    - N=18, G=4 → sizes [5, 5, 4, 4]
    - N=3,  G=4 → sizes [1, 1, 1] (only 3 groups created)

    Args:
        team_ids: Ordered team IDs (pre-shuffled by the caller if random)
        number_of_groups: Requested number of groups
        opening_team_a_id: Optional opening team, placed in group 1
        opening_team_b_id: Optional opening team, placed in group 1

    Returns:
        Dict mapping 1-based group_id → list of team IDs

    Raises:
        ConfigurationError: Empty list, duplicates, group count < 1, bad opening pair
    """
    if not team_ids:
        raise ConfigurationError("Team list cannot be empty")

    if number_of_groups < 1:
        raise ConfigurationError(f"Number of groups must be at least 1, got {number_of_groups}")

    if len(set(team_ids)) != len(team_ids):
        raise ConfigurationError("Duplicate team IDs detected")

    has_opening = opening_team_a_id is not None and opening_team_b_id is not None
    if has_opening:
        if opening_team_a_id == opening_team_b_id:
            raise ConfigurationError("Opening teams must be different")
        if opening_team_a_id not in team_ids:
            raise ConfigurationError(f"Opening team {opening_team_a_id} is not in the team list")
        if opening_team_b_id not in team_ids:
            raise ConfigurationError(f"Opening team {opening_team_b_id} is not in the team list")

    groups_count = effective_group_count(len(team_ids), number_of_groups, has_opening)
    groups: Dict[int, List[int]] = {group_id: [] for group_id in range(1, groups_count + 1)}

    if has_opening:
        return _distribute_with_opening(team_ids, groups, opening_team_a_id, opening_team_b_id)

    for i, team_id in enumerate(team_ids):
        groups[(i % groups_count) + 1].append(team_id)

    return groups


def _distribute_with_opening(
    team_ids: Sequence[int],
    groups: Dict[int, List[int]],
    opening_a: int,
    opening_b: int,
) -> Dict[int, List[int]]:
    groups[1].extend([opening_a, opening_b])

    for team_id in team_ids:
        if team_id in (opening_a, opening_b):
            continue
        # Smallest group first; min() keeps the lowest group_id on ties
        target = min(groups, key=lambda group_id: (len(groups[group_id]), group_id))
        groups[target].append(team_id)

    return groups


# ============================================================================
# Validation
# ============================================================================


def validate_distribution(
    distribution: Dict[int, List[int]],
    original_team_ids: Sequence[int],
    requested_groups: int,
) -> DistributionValidation:
    """
    Check that a distribution satisfies all invariants:
    1. No empty groups
    2. All teams assigned exactly once
    3. Max group size difference <= 1
    4. Group count <= requested number of groups

    Returns:
        DistributionValidation with is_valid and the list of violations
    """
    errors: List[str] = []

    for group_id, members in sorted(distribution.items()):
        if not members:
            errors.append(f"Group {group_id} is empty.")

    all_assigned = [team_id for members in distribution.values() for team_id in members]
    if len(all_assigned) != len(original_team_ids):
        errors.append(f"Expected {len(original_team_ids)} teams, but {len(all_assigned)} were assigned.")

    assigned_set = set(all_assigned)
    missing = [team_id for team_id in original_team_ids if team_id not in assigned_set]
    if missing:
        errors.append(f"{len(missing)} teams were not assigned to any group.")

    seen = set()
    duplicates = set()
    for team_id in all_assigned:
        if team_id in seen:
            duplicates.add(team_id)
        seen.add(team_id)
    if duplicates:
        errors.append(f"{len(duplicates)} teams appear in multiple groups.")

    if distribution:
        sizes = [len(members) for members in distribution.values()]
        if max(sizes) - min(sizes) > 1:
            errors.append(
                f"Group size imbalance: max={max(sizes)}, min={min(sizes)}, diff={max(sizes) - min(sizes)}."
            )

    if len(distribution) > requested_groups:
        errors.append(f"Created {len(distribution)} groups but only {requested_groups} were requested.")

    if errors:
        logger.debug("Group distribution failed validation: %s", "; ".join(errors))

    return DistributionValidation(is_valid=not errors, errors=errors)
