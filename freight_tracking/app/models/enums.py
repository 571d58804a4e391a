"""
User roles enumeration.

Defines the participant types of the freight marketplace that touch the
tracking core.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Supreme user with system-level access
        OPERATOR: Monitoring desk; receives incident notifications
        SHIPPER: Publishes shipments and follows their progress
        DRIVER: Independent driver executing shipments (default role)
        AFFILIATED_DRIVER: Driver working under a transport company
        TRANSPORT_COMPANY: Company managing affiliated drivers
    """
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    SHIPPER = "SHIPPER"
    DRIVER = "DRIVER"
    AFFILIATED_DRIVER = "AFFILIATED_DRIVER"
    TRANSPORT_COMPANY = "TRANSPORT_COMPANY"
