"""Library Console - Services Package

This package contains the clients for the external lending API:
- HTTP transport and error classification
- Catalog queries and search debouncing
- Inventory mutations (add, edit, delete books)
- Loan lifecycle (issue, return, loan lists)
- Session and user management
"""

from dataclasses import dataclass

from library_console.services.auth_service import AuthService
from library_console.services.catalog_service import CatalogQueryClient
from library_console.services.http_client import LendingHTTPClient
from library_console.services.inventory_service import InventoryMutationClient
from library_console.services.loan_service import LoanLifecycleController


@dataclass
class LendingServices:
    http: LendingHTTPClient
    catalog: CatalogQueryClient
    inventory: InventoryMutationClient
    loans: LoanLifecycleController
    auth: AuthService

    @classmethod
    def from_http(cls, http: LendingHTTPClient) -> "LendingServices":
        catalog = CatalogQueryClient(http)
        return cls(
            http=http,
            catalog=catalog,
            inventory=InventoryMutationClient(http),
            loans=LoanLifecycleController(http, catalog),
            auth=AuthService(http),
        )
