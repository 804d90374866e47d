"""
trailguard Service Registry
Maps logical service names to base URLs, with optional YAML overrides
"""
import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from trailguard.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class UnknownServiceError(LookupError):
    """Raised when a logical service name is not registered."""

    def __init__(self, service: str):
        super().__init__(f"Unknown service: {service}")
        self.service = service


class ServiceDefinition(BaseModel):
    """A logical remote service reachable over HTTP"""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    base_url: str = Field(..., min_length=1, description="Base URL requests are sent to")
    description: str = Field(default="", description="Service description")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


def default_services(settings: Settings) -> Dict[str, ServiceDefinition]:
    """Built-in services; internal ones are overridable through settings."""
    return {
        "engagement": ServiceDefinition(
            base_url=settings.ENGAGEMENT_SERVICE_URL,
            description="Engagement service",
        ),
        "pythonAgent": ServiceDefinition(
            base_url=settings.PYTHON_AGENT_URL,
            description="Python agent service",
        ),
        "googleMaps": ServiceDefinition(base_url="https://maps.googleapis.com"),
        "openWeather": ServiceDefinition(base_url="https://api.openweathermap.org"),
        "eventbrite": ServiceDefinition(base_url="https://www.eventbriteapi.com/v3"),
        "yelp": ServiceDefinition(base_url="https://api.yelp.com"),
    }


class ServiceRegistry:
    """Registry of logical services, resolved at call time"""

    def __init__(self, settings: Optional[Settings] = None, config_path: Optional[Path] = None):
        self.settings = settings or get_settings()
        self.services: Dict[str, ServiceDefinition] = default_services(self.settings)

        path = config_path or self.settings.SERVICE_REGISTRY_FILE
        self.config_path = Path(path) if path else None
        if self.config_path is not None:
            self.load_services(self.config_path)

    def load_services(self, config_path: Path) -> int:
        """
        Load or override services from a YAML file of the form
        ``services: {name: {base_url: ..., description: ...}}``.

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML is malformed
            ValueError: If a service definition is invalid
        """
        logger.info(f"Loading services from {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f)

        if not config_data or "services" not in config_data:
            logger.warning("No services section found in configuration", extra={"path": str(config_path)})
            return 0

        loaded_count = 0
        for name, service_config in (config_data["services"] or {}).items():
            try:
                self.services[name] = ServiceDefinition(**service_config)
            except Exception as e:
                raise ValueError(f"Invalid service definition for {name}: {e}") from e
            loaded_count += 1
            logger.info(
                f"Loaded service: {name}",
                extra={"service": name, "base_url": self.services[name].base_url}
            )

        return loaded_count

    def register(self, name: str, base_url: str, description: str = "") -> None:
        """Add or replace a service."""
        if not name:
            raise ValueError("Service name cannot be empty")
        self.services[name] = ServiceDefinition(base_url=base_url, description=description)

    def get_service_url(self, name: str) -> str:
        service = self.services.get(name)
        if service is None:
            raise UnknownServiceError(name)
        return service.base_url

    def all(self) -> Dict[str, str]:
        """All registered services as ``{name: base_url}``."""
        return {name: service.base_url for name, service in self.services.items()}
