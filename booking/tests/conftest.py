import pytest
from typing import Any, Dict, List
from unittest.mock import AsyncMock, patch

from booking.domain import AssignmentMethod
from booking.tests.factories import (
    FrozenClock,
    MemoryEngine,
    minimal_link,
    minimal_rule,
    team_link,
)


@pytest.fixture
def clock() -> FrozenClock:
    """A clock pinned to Monday 2025-03-03 08:00 UTC."""
    return FrozenClock()


@pytest.fixture
def specific_engine(clock: FrozenClock) -> MemoryEngine:
    """Engine with one specific link owned by alice."""
    return MemoryEngine(
        links=[minimal_link()],
        rules=[minimal_rule("alice")],
        clock=clock,
    )


@pytest.fixture
def team_engine(clock: FrozenClock) -> MemoryEngine:
    """Engine with a round-robin and a load-balanced link over
    alice, bob and carol."""
    return MemoryEngine(
        links=[
            team_link(AssignmentMethod.ROUND_ROBIN, link_id="rr"),
            team_link(AssignmentMethod.LOAD_BALANCED, link_id="lb"),
            team_link(AssignmentMethod.POOLED, link_id="pooled"),
        ],
        rules=[minimal_rule(user) for user in ("alice", "bob", "carol")],
        clock=clock,
    )


@pytest.fixture
def mock_workflow_activities() -> Dict[str, Any]:
    """Provide utilities for mocking workflow activities in unit tests."""

    def create_activity_mock(
        activity_name: str, return_value: Any = None
    ) -> AsyncMock:
        """Create a mock for a specific activity."""
        mock = AsyncMock(return_value=return_value)
        mock._activity_name = activity_name
        return mock

    def patch_execute_activity(activity_responses: List[Any]) -> Any:
        """
        Patch workflow.execute_activity with a sequence of responses.

        Args:
            activity_responses: List of return values for activities in call
                order
        """
        return patch(
            "temporalio.workflow.execute_activity",
            side_effect=activity_responses,
        )

    return {
        "create_activity_mock": create_activity_mock,
        "patch_execute_activity": patch_execute_activity,
    }
