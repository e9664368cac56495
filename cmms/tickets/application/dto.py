"""
Ticket Application DTOs
=======================

Pydantic models validating ticket input before it reaches the domain.
"""

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ========== Type Aliases for Literals ==========
BreakdownTypeStr = Literal["mechanical", "electrical", "other"]
LocationMethodStr = Literal["grid", "qr"]


class TicketCreateDTO(BaseModel):
    """Input for reporting a new maintenance issue."""
    model_config = ConfigDict(str_strip_whitespace=True)

    reporter_id: UUID = Field(..., description="Reporting user")
    breakdown_type: BreakdownTypeStr = Field(..., description="Kind of breakdown")
    description: str = Field(..., min_length=10, max_length=1000)
    safety_required: bool = Field(default=False, description="Safety risk flagged by the reporter")
    assistance_required: bool = Field(default=False, description="Reporter asks for a team")
    location_method: LocationMethodStr = Field(..., description="grid reference or machine QR")
    sector: str = Field(..., min_length=1, max_length=50)
    grid_location: Optional[str] = Field(default=None, min_length=1, max_length=20)
    machine_id: Optional[UUID] = Field(default=None, description="Machine located by QR scan")
    image_url: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_location(self) -> "TicketCreateDTO":
        """Exactly one location field, matching the location method."""
        if self.location_method == "grid":
            if not self.grid_location:
                raise ValueError("grid_location is required when location_method is 'grid'")
            if self.machine_id is not None:
                raise ValueError("machine_id must be empty when location_method is 'grid'")
        else:
            if self.machine_id is None:
                raise ValueError("machine_id is required when location_method is 'qr'")
            if self.grid_location:
                raise ValueError("grid_location must be empty when location_method is 'qr'")
        return self
