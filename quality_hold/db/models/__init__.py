"""
ORM models for the quality incident workflow and the logistics entities it
touches (suppliers, shipments, supplier delivery records).

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

# Re-export commonly used models for convenience and to ensure import side-effects
# register all mapped classes with SQLAlchemy metadata.

from .procurement import (  # noqa: F401
    DeliveryOutcome,
    Supplier,
    SupplierDeliveryRecord,
)
from .shipment import (  # noqa: F401
    Shipment,
)
from .quality import (  # noqa: F401
    IncidentStatus,
    IssueType,
    MediaType,
    QualityIncident,
    QualityMedia,
    ReviewAction,
    ReviewActionType,
    SAMPLE_GROUPS,
    SampleCard,
    SampleGroup,
    SampleId,
)
