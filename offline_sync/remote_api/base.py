# offline_sync/remote_api/base.py
# Description: The collaborator interface every remote backend implements.
#
# Imports
from typing import Any, Callable, List, Optional, Protocol, runtime_checkable
#
# Local Imports
from .schemas import ChangeEvent, OrderBy, QueryFilter, Record
#
#######################################################################################################################
#
# Functions:

ChangeHandler = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class RemoteBackend(Protocol):
    """
    Query/insert/update/delete plus a change-feed subscription per named resource.

    Implementations raise `TransientNetworkError` for retryable failures and
    `RemoteRejection` for requests the backend refuses.
    """

    async def query(self, resource: str, filter: Optional[QueryFilter] = None,
                    order_by: Optional[OrderBy] = None) -> List[Record]: ...

    async def insert(self, resource: str, payload: Record) -> Record: ...

    async def update(self, resource: str, record_id: Any, payload: Record) -> Record: ...

    async def delete(self, resource: str, record_id: Any) -> None: ...

    def subscribe(self, resource: str, handler: ChangeHandler,
                  filter: Optional[QueryFilter] = None) -> Unsubscribe: ...

#
# End of offline_sync/remote_api/base.py
########################################################################################################################
