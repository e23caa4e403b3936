"""
Agent gateway selection for a run.

``PipelineConfig.gateway`` names the gateway class. Names resolve against
classes registered in-process first, then against the ``epicpilot.gateways``
entry-point group, so a plugin package can ship its own agent adapter:

    [project.entry-points."epicpilot.gateways"]
    MyAgentGateway = "mypackage.agent:MyAgentGateway"

A gateway class with a ``from_config(config)`` classmethod is built from the
run configuration; any other class is built with no arguments.
"""

from __future__ import annotations

import warnings
from importlib.metadata import entry_points
from typing import TYPE_CHECKING

from epicpilot.domain.interfaces import AgentGatewayInterface

if TYPE_CHECKING:
    from epicpilot.domain.models import PipelineConfig

GATEWAY_GROUP = "epicpilot.gateways"


class GatewayRegistry:
    """
    Resolves configured gateway names to AgentGatewayInterface classes.

    Entry points are scanned once, on the first lookup.

    Example usage:
        gateway = GatewayRegistry.build(load_config())
    """

    _gateways: dict[str, type[AgentGatewayInterface]] = {}
    _discovered: bool = False

    @classmethod
    def _discover(cls) -> None:
        if cls._discovered:
            return
        for ep in entry_points(group=GATEWAY_GROUP):
            try:
                cls._gateways.setdefault(ep.name, ep.load())
            except Exception as e:
                warnings.warn(
                    f"Skipping gateway '{ep.name}': {e}",
                    stacklevel=3,
                )
        cls._discovered = True

    @classmethod
    def register(cls, name: str, gateway_class: type[AgentGatewayInterface]) -> None:
        """Make a gateway class selectable by name; wins over entry points."""
        cls._gateways[name] = gateway_class

    @classmethod
    def resolve(cls, name: str) -> type[AgentGatewayInterface]:
        """
        Gateway class configured under ``name``.

        Raises:
            KeyError: If no gateway has that name
        """
        cls._discover()
        if name not in cls._gateways:
            known = ", ".join(sorted(cls._gateways)) or "(none)"
            raise KeyError(f"Gateway '{name}' not found. Available gateways: {known}")
        return cls._gateways[name]

    @classmethod
    def build(cls, config: PipelineConfig) -> AgentGatewayInterface:
        """
        Gateway for a run, built from the run configuration.

        Raises:
            KeyError: If ``config.gateway`` names no known gateway
        """
        gateway_class = cls.resolve(config.gateway)
        from_config = getattr(gateway_class, "from_config", None)
        if from_config is None:
            return gateway_class()
        gateway: AgentGatewayInterface = from_config(config)
        return gateway
