"""Device models.

Devices are owned by the router management layer; the poller only reads them.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
import netaddr


class ConnectionMethod(str, Enum):
    """How the poller talks to a device family."""
    API = "api"
    REST = "rest"
    SNMP = "snmp"


class SNMPVersion(str, Enum):
    """SNMP version enumeration."""
    V1 = "1"
    V2C = "2c"


class Device(BaseModel):
    """A monitored router, as read from the management tables."""

    id: str
    name: str = Field(..., min_length=1, max_length=255)
    ip_address: str = Field(..., description="Device IP address")
    cloud_ddns_hostname: str | None = None
    connection_method: ConnectionMethod = Field(default=ConnectionMethod.REST)
    api_port: int = Field(default=8728, ge=1, le=65535)
    rest_port: int = Field(default=443, ge=1, le=65535)
    snmp_port: int = Field(default=161, ge=1, le=65535)
    snmp_community: str | None = "public"
    snmp_version: SNMPVersion = Field(default=SNMPVersion.V2C)
    snmp_enabled: bool = Field(default=False, description="SNMP answers when the API fails")
    username: str | None = None
    encrypted_password: str | None = None
    include_dynamic_interfaces: bool = False
    owner_id: str | None = None
    recipient_ids: list[str] = Field(default_factory=list)
    recipient_emails: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True

    class Config:
        from_attributes = True

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v: str) -> str:
        """Validate IP address format."""
        try:
            netaddr.IPAddress(v)
            return v
        except (netaddr.AddrFormatError, ValueError) as e:
            raise ValueError(f"Invalid IP address: {v}") from e

    @field_validator("recipient_emails", mode="before")
    @classmethod
    def parse_recipient_emails(cls, v: Any) -> Any:
        """Accept the JSON text the device query aggregates addresses into."""
        if v is None:
            return {}
        if isinstance(v, str):
            return json.loads(v) if v else {}
        return v

    @property
    def address(self) -> str:
        """Host to connect to; the DDNS name wins when the router reported one."""
        return self.cloud_ddns_hostname or self.ip_address

    @property
    def alert_recipients(self) -> list[str]:
        """Owner first, then assigned users, without duplicates."""
        recipients: list[str] = []
        for user_id in [self.owner_id, *self.recipient_ids]:
            if user_id and user_id not in recipients:
                recipients.append(user_id)
        return recipients
