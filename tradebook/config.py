"""Configuration loader for the trade journal.

Supports YAML format with environment variable interpolation.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml


@dataclass
class FxConfig:
    """Exchange rate source and fallback settings."""
    source: str = "http"  # "http" or "kv"
    url: str = "https://bcd-api-dca-ipa.cbsa-asfc.cloud-nuage.canada.ca/exchange-rate-lambda/exchange-rates"
    fallback_rate: Decimal = Decimal("0.732")  # USD per 1 CAD
    timeout_seconds: float = 2.0
    effective_zone: str = "America/Los_Angeles"
    base_currency: str = "CAD"
    quote_currency: str = "USD"
    refresh_time: str = "02:30"  # daily, in effective_zone


@dataclass
class PersistenceConfig:
    """Database and logging settings."""
    db_path: str = "tradebook.db"
    log_file: str = "tradebook.log"
    log_level: str = "INFO"


@dataclass
class ListingConfig:
    """Trade listing page sizes."""
    default_page_size: int = 20
    max_page_size: int = 100


@dataclass
class AppConfig:
    """Complete configuration."""
    fx: FxConfig = field(default_factory=FxConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    listing: ListingConfig = field(default_factory=ListingConfig)

    @classmethod
    def from_yaml(cls, config_path: str) -> "AppConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            AppConfig instance

        Example YAML:
            fx:
              source: http
              fallback_rate: 0.732
              effective_zone: America/Los_Angeles
            persistence:
              db_path: "${STATE_DIR}/tradebook.db"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        fx = FxConfig(**{
            k: Decimal(str(v)) if k == "fallback_rate" else v
            for k, v in (data.get("fx") or {}).items()
        })
        persistence = PersistenceConfig(**(data.get("persistence") or {}))
        listing = ListingConfig(**(data.get("listing") or {}))

        return cls(fx=fx, persistence=persistence, listing=listing)

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {
            "fx": {
                "source": self.fx.source,
                "url": self.fx.url,
                "fallback_rate": str(self.fx.fallback_rate),
                "timeout_seconds": self.fx.timeout_seconds,
                "effective_zone": self.fx.effective_zone,
                "base_currency": self.fx.base_currency,
                "quote_currency": self.fx.quote_currency,
                "refresh_time": self.fx.refresh_time,
            },
            "persistence": {
                "db_path": self.persistence.db_path,
                "log_file": self.persistence.log_file,
                "log_level": self.persistence.log_level,
            },
            "listing": {
                "default_page_size": self.listing.default_page_size,
                "max_page_size": self.listing.max_page_size,
            },
        }

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
