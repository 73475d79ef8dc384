"""Request Type Catalog - Labels and links per originating module

Static lookup table handed to the notification service so call sites never
hardcode request-type labels or URLs.
"""
from typing import Dict, NamedTuple


class RequestTypeInfo(NamedTuple):
    label: str
    link_template: str  # Formatted with request_id


REQUEST_TYPE_CATALOG: Dict[str, RequestTypeInfo] = {
    "LEAVE": RequestTypeInfo("Leave Request", "/dashboard/leave/{request_id}"),
    "EXPENSE": RequestTypeInfo("Expense Claim", "/dashboard/expense/{request_id}"),
    "SEAL": RequestTypeInfo("Seal Usage Request", "/dashboard/admin/seal/{request_id}"),
    "CARD": RequestTypeInfo("Business Card Request", "/dashboard/admin/card/{request_id}"),
    "STATIONERY": RequestTypeInfo("Stationery Request", "/dashboard/admin/stationery/{request_id}"),
    "OVERTIME": RequestTypeInfo("Overtime Request", "/dashboard/overtime/{request_id}"),
    "BUSINESS_TRIP": RequestTypeInfo("Business Trip Request", "/dashboard/business-trip/{request_id}"),
    "GENERAL": RequestTypeInfo("Request", "/dashboard/approval"),
}

_FALLBACK = REQUEST_TYPE_CATALOG["GENERAL"]


def get_request_type_info(request_type: str) -> RequestTypeInfo:
    """Catalog entry for a request type, falling back to the generic entry"""
    return REQUEST_TYPE_CATALOG.get((request_type or "").upper(), _FALLBACK)


def build_request_link(base_url: str, request_type: str, request_id: str) -> str:
    """Absolute link to the originating request"""
    info = get_request_type_info(request_type)
    return base_url.rstrip("/") + info.link_template.format(request_id=request_id)
