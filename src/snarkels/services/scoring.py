"""Answer points, reward distributions and quiz settings checks."""

from __future__ import annotations

import math
from typing import Any

from snarkels.models import ValidationResult


def calculate_answer_points(
    is_correct: bool,
    base_points: int,
    time_to_answer_ms: float,
    max_time_ms: float,
    speed_bonus_enabled: bool,
    max_speed_bonus: int,
) -> int:
    """Base points for a correct answer plus a bonus that shrinks linearly with answer time."""
    if not is_correct:
        return 0
    points = base_points
    if speed_bonus_enabled and max_time_ms > 0 and time_to_answer_ms < max_time_ms:
        ratio = time_to_answer_ms / max_time_ms
        points += math.floor(max_speed_bonus * (1 - ratio))
    return points


def calculate_quadratic_rewards(
    submissions: list[dict[str, Any]],
    total_reward_pool: str | float,
    points_weight: float = 0.7,
) -> list[dict[str, Any]]:
    """Split the pool by sqrt-weighted rank and points.

    submissions are ranked best first; each needs id, userId and totalPoints.
    Amounts are strings with 6 decimals.
    """
    if not submissions:
        return []
    pool = float(total_reward_pool)
    participation_weight = 1 - points_weight
    n = len(submissions)
    scored = []
    for index, sub in enumerate(submissions):
        participation = math.sqrt(n - index)
        points = math.sqrt(max(0, sub.get("totalPoints", 0)))
        scored.append((participation_weight * participation + points_weight * points, index, sub))
    scored.sort(key=lambda s: (-s[0], s[1]))
    total = sum(s[0] for s in scored)
    out = []
    for position, (score, _, sub) in enumerate(scored, start=1):
        share = score / total if total > 0 else 1 / n
        out.append(
            {
                "submissionId": sub.get("id"),
                "userId": sub.get("userId"),
                "position": position,
                "amount": f"{pool * share:.6f}",
            }
        )
    return out


def calculate_linear_rewards(
    submissions: list[dict[str, Any]],
    reward_amounts: list[float],
    total_winners: int,
) -> list[dict[str, Any]]:
    """Fixed amount per finishing position for the top total_winners by points."""
    if not submissions or not reward_amounts:
        return []
    ranked = sorted(submissions, key=lambda s: s.get("totalPoints", 0), reverse=True)[:total_winners]
    return [
        {
            "submissionId": sub.get("id"),
            "userId": sub.get("userId"),
            "position": i + 1,
            "amount": str(reward_amounts[i]) if i < len(reward_amounts) else "0",
        }
        for i, sub in enumerate(ranked)
    ]


def validate_snarkel_settings(settings: dict[str, Any]) -> ValidationResult:
    errors: list[str] = []
    title = (settings.get("title") or "").strip()
    if len(title) < 3:
        errors.append("Snarkel title must be at least 3 characters long")
    time_limit = settings.get("timeLimit")
    if time_limit and not 1 <= time_limit <= 120:
        errors.append("Time limit must be between 1 and 120 minutes")
    if settings.get("basePointsPerQuestion", 0) < 100:
        errors.append("Base points per question must be at least 100")
    if settings.get("maxSpeedBonus", 0) < 0:
        errors.append("Maximum speed bonus cannot be negative")
    if settings.get("maxQuestions", 0) > 60:
        errors.append("Maximum questions cannot exceed 60")
    return ValidationResult(is_valid=not errors, errors=errors)


def validate_reward_settings(rewards: dict[str, Any]) -> ValidationResult:
    """Reward configuration checks. Disabled rewards are always valid."""
    if not rewards.get("enabled"):
        return ValidationResult(is_valid=True)
    errors: list[str] = []
    if not rewards.get("tokenAddress"):
        errors.append("Reward token is required")
    kind = rewards.get("type")
    if kind == "LINEAR":
        if (rewards.get("totalWinners") or 0) < 1:
            errors.append("Total winners must be at least 1")
        if not rewards.get("rewardAmounts"):
            errors.append("Reward amounts are required")
    elif kind == "QUADRATIC":
        try:
            pool = float(rewards.get("totalRewardPool") or 0)
        except (TypeError, ValueError):
            pool = 0.0
        if pool <= 0:
            errors.append("Total reward pool must be greater than 0")
        if (rewards.get("minParticipants") or 0) < 1:
            errors.append("Minimum participants must be at least 1")
        weight = rewards.get("pointsWeight", 0.7)
        if weight is None or not 0 <= weight <= 1:
            errors.append("Points weight must be between 0 and 1")
    return ValidationResult(is_valid=not errors, errors=errors)
