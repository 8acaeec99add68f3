"""
Settings Service

Key/value overrides for DNS, AllowedIPs and connection logging that
shadow the boot-time defaults. Each field is written independently.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wgpanel.config import WireGuardConfig
from wgpanel.models.setting import Setting
from wgpanel.networking.client_config import ServerSettings

logger = logging.getLogger(__name__)

DNS_KEY = "dns"
ALLOWED_IPS_KEY = "allowed_ips"
LOGGING_ENABLED_KEY = "logging_enabled"


class SettingsService:
    """
    Read and write settings overrides

    Attributes:
        db: Database session
        defaults: Boot-time WireGuard defaults
    """

    def __init__(self, db: Session, defaults: WireGuardConfig):
        self.db = db
        self.defaults = defaults

    def get(self, key: str) -> Optional[str]:
        setting = self.db.get(Setting, key)
        return setting.value if setting is not None else None

    def set(self, key: str, value: str) -> None:
        """Upsert a single setting"""
        setting = self.db.get(Setting, key)
        if setting is None:
            self.db.add(Setting(key=key, value=value))
        else:
            setting.value = value
        self.db.commit()
        logger.info(f"Updated setting {key}")

    def get_all(self) -> Dict[str, str]:
        return {s.key: s.value for s in self.db.execute(select(Setting)).scalars()}

    def logging_enabled(self) -> bool:
        return self.get(LOGGING_ENABLED_KEY) == "true"

    def effective_server_settings(self) -> ServerSettings:
        """
        Current values for client profile generation

        Stored non-empty overrides win over boot defaults.
        """
        stored = self.get_all()
        return ServerSettings(
            server_public_key=self.defaults.server_public_key,
            server_endpoint=self.defaults.server_endpoint,
            dns=stored.get(DNS_KEY) or self.defaults.dns,
            allowed_ips=stored.get(ALLOWED_IPS_KEY) or self.defaults.allowed_ips,
        )

    def update(
        self,
        dns: Optional[str] = None,
        allowed_ips: Optional[str] = None,
        logging_enabled: Optional[bool] = None,
    ) -> List[str]:
        """
        Write each provided field as its own atomic update

        A failed field does not stop the remaining ones.

        Returns:
            Keys whose write failed
        """
        updates = []
        if dns is not None:
            updates.append((DNS_KEY, dns))
        if allowed_ips is not None:
            updates.append((ALLOWED_IPS_KEY, allowed_ips))
        if logging_enabled is not None:
            updates.append((LOGGING_ENABLED_KEY, "true" if logging_enabled else "false"))

        failed = []
        for key, value in updates:
            try:
                self.set(key, value)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to update setting {key}: {e}")
                failed.append(key)
        return failed
