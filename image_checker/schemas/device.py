"""
Device record schema for the session payload

Validated at the payload store boundary on both write and read, so a
malformed record fails there instead of leaking half-typed values to
callers.
"""
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict


class DeviceStatus(str, Enum):
    """Reviewer verdict for one device"""
    PENDING = "pending"
    APPROVED = "approved"
    CUSTOM_SELECTED = "custom_selected"
    SKIPPED = "skipped"
    REJECTED = "rejected"


COMPLETED_STATUSES = frozenset({
    DeviceStatus.APPROVED,
    DeviceStatus.CUSTOM_SELECTED,
    DeviceStatus.REJECTED,
})


class DeviceRecord(BaseModel):
    """One row of the uploaded CSV plus the reviewer's decisions"""
    # Unknown CSV columns are carried through untouched
    model_config = ConfigDict(extra="allow")
    
    # Source fields
    product_name: str = ""
    manufacturer: str = ""
    manuf_number: str = ""
    gmdn_terms: str = ""
    device_id: str = ""
    search_query: str = ""
    image_query: str = ""
    manual_query: str = ""
    official_product_name: str = ""
    image_url: str = ""  # Primary image
    image_urls: str = ""  # All candidates, pipe-separated
    manual_url: str = ""
    manual_urls: str = ""
    
    # Reviewer fields
    status: DeviceStatus = DeviceStatus.PENDING
    selected_image_url: Optional[str] = None
    selected_manual_url: Optional[str] = None
    custom_image_url: str = ""
    custom_type: str = ""
    checker_notes: str = ""
    material_category: str = ""
    material_subcategory: str = ""
    
    # Position within the batch grid
    batch_id: Optional[int] = None
    row_index: Optional[int] = None

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_STATUSES


def count_completed(devices: Iterable[DeviceRecord]) -> int:
    """Number of devices carrying a final verdict"""
    return sum(1 for device in devices if device.is_completed)
