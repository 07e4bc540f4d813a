from __future__ import annotations


class TownSimError(Exception):
    """Base class for every recoverable or configuration error in town_sim."""


class InsufficientInventory(TownSimError):
    def __init__(self, item: str, requested: int, available: int) -> None:
        super().__init__(
            f"insufficient inventory item={item} requested={requested} available={available}"
        )
        self.item = item
        self.requested = requested
        self.available = available


class InsufficientFunds(TownSimError):
    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"insufficient funds requested={requested} available={available}")
        self.requested = requested
        self.available = available


class Depleted(TownSimError):
    def __init__(self, kind: str | None = None) -> None:
        super().__init__(f"resource depleted kind={kind or '*'}")
        self.kind = kind


class NotEdible(TownSimError):
    def __init__(self, item: str) -> None:
        super().__init__(f"item is not edible item={item}")
        self.item = item


class InvalidLocation(TownSimError):
    """Action requires a location the resident is not at. Never fatal."""

    def __init__(self, required: str, actual: str) -> None:
        super().__init__(f"invalid location required={required} actual={actual}")
        self.required = required
        self.actual = actual


class NotForSale(TownSimError):
    def __init__(self, item: str) -> None:
        super().__init__(f"shop does not trade item={item}")
        self.item = item


class NothingToHarvest(TownSimError):
    pass


class MalformedDecision(TownSimError):
    pass


class ProviderError(TownSimError):
    pass


class ProviderTimeout(ProviderError):
    pass


class EmptyPoolError(TownSimError):
    """Raised when a weighted pool has nothing to draw from (configuration bug)."""


class AgentNotFound(TownSimError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"agent not found agent_id={agent_id}")
        self.agent_id = agent_id


class DuplicateRequestError(TownSimError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"agent already has a decision request in flight agent_id={agent_id}")
        self.agent_id = agent_id


class PlotOccupied(TownSimError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"farm plot already planted agent_id={agent_id}")
        self.agent_id = agent_id
