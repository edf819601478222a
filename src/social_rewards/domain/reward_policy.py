"""Point values awarded for verified social actions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RewardPolicy:
    """Fixed positive weights for each rewardable condition."""

    follow_points: int = 10
    post_points: int = 10
    reply_points: int = 1
    windowed_points: int = 1

    def __post_init__(self) -> None:
        for name in ("follow_points", "post_points", "reply_points", "windowed_points"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive integer")

    def verification_points(self, *, followed_target: bool, posted_required_phrase: bool) -> int:
        """Sum the rewards of the two verification conditions that are satisfied."""

        total = 0
        if followed_target:
            total += self.follow_points
        if posted_required_phrase:
            total += self.post_points
        return total
