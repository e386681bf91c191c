"""Reward catalog - redeemable items and their point cost.

Reference data: read-only for the lifetime of a request, so lookups take
no locks.
"""
import logging
from typing import Dict, Iterable, List, Optional

from emopoints.shared.models import Reward

logger = logging.getLogger(__name__)


class RewardNotFoundError(LookupError):
    """No reward with the requested id."""

    def __init__(self, reward_id: str):
        super().__init__(f"Reward '{reward_id}' not found")
        self.reward_id = reward_id


DEFAULT_REWARDS = (
    Reward(id="keychain", name="Keychain", cost=20, description="Keychain reward"),
    Reward(id="pencil", name="Pencil", cost=10, description="Pencil reward"),
)


class RewardCatalog:
    """Lookup of rewards by id."""

    def __init__(self, rewards: Optional[Iterable[Reward]] = None):
        self._rewards: Dict[str, Reward] = {}
        for reward in (DEFAULT_REWARDS if rewards is None else rewards):
            if reward.id in self._rewards:
                raise ValueError(f"Duplicate reward id '{reward.id}'")
            self._rewards[reward.id] = reward

        logger.info(
            "REWARD_CATALOG_LOADED",
            extra={"reward_count": len(self._rewards)}
        )

    def get(self, reward_id: str) -> Reward:
        """Raises RewardNotFoundError if absent."""
        reward = self._rewards.get(reward_id)
        if reward is None:
            raise RewardNotFoundError(reward_id)
        return reward

    def get_cost(self, reward_id: str) -> int:
        return self.get(reward_id).cost

    def list_rewards(self) -> List[Reward]:
        """All rewards, cheapest first."""
        return sorted(self._rewards.values(), key=lambda r: (r.cost, r.name))

    def __contains__(self, reward_id: str) -> bool:
        return reward_id in self._rewards

    def __len__(self) -> int:
        return len(self._rewards)
