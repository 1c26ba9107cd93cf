from homecontrol.services.gateway.home_assistant import EntityState, HomeAssistantGateway

__all__ = ["EntityState", "HomeAssistantGateway"]
