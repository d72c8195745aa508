from parcelbot.gateway.base import EnvironmentGateway, GatewayEvent

__all__ = ["EnvironmentGateway", "GatewayEvent"]
