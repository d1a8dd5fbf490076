"""Onboarding-state reader — which mentor onboarding step comes next.

Profile data itself belongs to the mentor service; this reader only looks at
the `onboarding-progress` collection, where each document holds the
``completedSteps`` of one account.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from bson import ObjectId

ONBOARDING_STEPS: tuple[str, ...] = (
    "profile",
    "expertise",
    "availability",
    "verification",
    "review",
)

ONBOARDING_COLLECTION = "onboarding-progress"


class OnboardingStateReader(Protocol):
    async def next_incomplete_step(self, account_id: str) -> Optional[str]: ...


def earliest_incomplete_step(
    completed: Sequence[str], steps: Sequence[str] = ONBOARDING_STEPS
) -> Optional[str]:
    """Return the first step in *steps* not in *completed*, or None when done."""
    done = set(completed)
    for step in steps:
        if step not in done:
            return step
    return None


class MongoOnboardingStateReader:
    def __init__(self, collection) -> None:
        self._col = collection

    async def next_incomplete_step(self, account_id: str) -> Optional[str]:
        user_id = ObjectId(account_id) if ObjectId.is_valid(account_id) else account_id
        doc = await self._col.find_one({"userId": user_id}, {"completedSteps": 1})
        completed = (doc or {}).get("completedSteps") or []
        return earliest_incomplete_step(completed)
