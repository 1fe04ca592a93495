"""
Upstream data source adapters.

Every municipal source implements the three-operation DataSourceAdapter
contract; orchestration code depends on the contract only. Adapters own:

- Upstream URLs, auth headers and request shapes
- Retry with exponential backoff
- Translation of wire records into BusinessRecord
"""

from .calgary_business_licence import CalgaryBusinessLicenceAdapter
from .data_source import BusinessRecord, CategorySummary, DataSourceAdapter, filter_within_radius

__all__ = [
    "BusinessRecord",
    "CalgaryBusinessLicenceAdapter",
    "CategorySummary",
    "DataSourceAdapter",
    "filter_within_radius",
]
