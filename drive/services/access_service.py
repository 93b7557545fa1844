"""Per-file ownership, collaborator permissions and access requests."""

from typing import Callable, Dict, Iterable, List, Optional
import copy

from common.constants import PERMISSIONS
from common.logging_config import get_logger
from common.protocol import COLLABORATOR_PROTOCOL, metadata_record
from drive.domain import AccessRecord, AccessRequest, Collaborator
from drive.exceptions import CollaboratorError, NotFoundError, NotSetupError, ValidationError
from drive.utils import utcnow

logger = get_logger(__name__)


def _noop() -> None:
    return None


def normalize_permissions(permissions: Iterable[str]) -> List[str]:
    """
    Validate a permission set and return it de-duplicated in canonical order.

    Raises:
        ValidationError: If any permission is not one of read/write/delete/share
    """
    requested = set(permissions)
    unknown = requested - set(PERMISSIONS)
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(sorted(unknown))}")
    return [p for p in PERMISSIONS if p in requested]


class AccessControl:
    """
    One access record per file. The owner holds every permission
    implicitly; collaborators hold exactly the set last granted to them.
    A change whose save fails is reverted before the error propagates.
    """

    def __init__(self, ledger=None, on_change: Optional[Callable[[], None]] = None):
        self.ledger = ledger
        self._on_change = on_change or _noop
        self._records: Dict[str, AccessRecord] = {}

    def _require(self, file_id: str) -> AccessRecord:
        record = self._records.get(file_id)
        if record is None:
            raise NotSetupError("File not set up for collaboration")
        return record

    def _persist(self, undo: Callable[[], None]) -> None:
        """Save, reverting the in-memory change if the save fails."""
        try:
            self._on_change()
        except Exception:
            undo()
            raise

    @staticmethod
    def _restorer(record: AccessRecord) -> Callable[[], None]:
        collaborators = copy.deepcopy(record.collaborators)
        requests = copy.deepcopy(record.access_requests)

        def undo() -> None:
            record.collaborators = collaborators
            record.access_requests = requests

        return undo

    def initialize(self, file_id: str, owner: str) -> AccessRecord:
        """
        Create the access record of a file.

        Raises:
            ValidationError: If the file already has an access record
        """
        if file_id in self._records:
            raise ValidationError("File already set up for collaboration")
        if not owner:
            raise ValidationError("Owner address is required")

        record = AccessRecord(file_id=file_id, owner=owner)
        self._records[file_id] = record
        self._persist(lambda: self._records.pop(file_id, None))
        logger.info(f"Initialized collaboration for file {file_id} [owner={owner}]")
        return record

    def get_access(self, file_id: str) -> Optional[AccessRecord]:
        return self._records.get(file_id)

    async def add_or_update_collaborator(
        self,
        file_id: str,
        address: str,
        permissions: Iterable[str],
        added_by: str,
    ) -> Collaborator:
        """
        Grant a collaborator a permission set, replacing any previous set.

        Args:
            file_id: File to grant access to
            address: Collaborator identity
            permissions: Subset of read/write/delete/share
            added_by: Identity making the grant

        Returns:
            The collaborator entry

        Raises:
            NotSetupError: If the file has no access record
            ValidationError: Unknown permission, or ``address`` is the owner
            CollaboratorError: If the ledger rejects the grant record
        """
        record = self._require(file_id)
        granted = self._validate_grant(record, address, permissions)
        await self._commit_grant(file_id, address, granted, added_by)
        undo = self._restorer(record)
        collaborator = self._apply_grant(record, address, granted, added_by)
        self._persist(undo)
        return collaborator

    def _validate_grant(self, record: AccessRecord, address: str, permissions: Iterable[str]) -> List[str]:
        if not address:
            raise ValidationError("Collaborator address is required")
        if address == record.owner:
            raise ValidationError("The owner cannot be added as a collaborator")
        return normalize_permissions(permissions)

    async def _commit_grant(self, file_id: str, address: str, permissions: List[str], added_by: str) -> None:
        if self.ledger is None:
            return
        body = {'address': address, 'permissions': permissions, 'addedBy': added_by}
        try:
            await self.ledger.commit_record(metadata_record(COLLABORATOR_PROTOCOL, file_id, body))
        except Exception as e:
            logger.error(f"Failed to record grant for {address} on file {file_id}: {e}", exc_info=True)
            raise CollaboratorError("ledger.commit_record", e) from e

    @staticmethod
    def _apply_grant(record: AccessRecord, address: str, permissions: List[str], added_by: str) -> Collaborator:
        collaborator = record.find_collaborator(address)
        if collaborator is not None:
            collaborator.permissions = permissions
            logger.info(f"Updated {address} on file {record.file_id} to {permissions}")
            return collaborator

        collaborator = Collaborator(
            address=address,
            permissions=permissions,
            added_at=utcnow(),
            added_by=added_by,
        )
        record.collaborators.append(collaborator)
        logger.info(f"Added collaborator {address} to file {record.file_id} with {permissions}")
        return collaborator

    def request_access(self, file_id: str, requester: str, requested_permissions: Iterable[str]) -> AccessRequest:
        """
        Append a pending access request.

        Raises:
            NotSetupError: If the file has no access record
            ValidationError: Unknown permission, or the owner is requesting
        """
        record = self._require(file_id)
        if requester == record.owner:
            raise ValidationError("The owner already has full access")

        request = AccessRequest(
            requester=requester,
            requested_permissions=normalize_permissions(requested_permissions),
            requested_at=utcnow(),
        )
        undo = self._restorer(record)
        record.access_requests.append(request)
        self._persist(undo)
        logger.info(f"Access requested on file {file_id} by {requester}: {request.requested_permissions}")
        return request

    def _latest_pending(self, record: AccessRecord, requester: str) -> AccessRequest:
        for request in reversed(record.access_requests):
            if request.requester == requester and request.status == "pending":
                return request
        raise NotFoundError(f"No pending access request from {requester}")

    async def approve_request(self, file_id: str, requester: str, approved_by: str) -> Collaborator:
        """
        Approve the most recent pending request of ``requester`` and grant the
        requested permissions. The request and the grant are applied together.

        Raises:
            NotSetupError: If the file has no access record
            NotFoundError: If ``requester`` has no pending request
        """
        record = self._require(file_id)
        request = self._latest_pending(record, requester)
        granted = self._validate_grant(record, requester, request.requested_permissions)
        await self._commit_grant(file_id, requester, granted, approved_by)

        undo = self._restorer(record)
        request.status = "approved"
        request.approved_by = approved_by
        request.approved_at = utcnow()
        collaborator = self._apply_grant(record, requester, granted, approved_by)
        self._persist(undo)
        return collaborator

    def reject_request(self, file_id: str, requester: str, rejected_by: str) -> AccessRequest:
        record = self._require(file_id)
        request = self._latest_pending(record, requester)
        undo = self._restorer(record)
        request.status = "rejected"
        request.rejected_by = rejected_by
        request.rejected_at = utcnow()
        self._persist(undo)
        logger.info(f"Rejected access request on file {file_id} from {requester}")
        return request

    def has_permission(self, file_id: str, address: str, permission: str) -> bool:
        """Owner always; collaborators per their granted set; False for anything unknown."""
        record = self._records.get(file_id)
        if record is None:
            return False
        if address == record.owner:
            return True
        collaborator = record.find_collaborator(address)
        return collaborator is not None and permission in collaborator.permissions

    def remove_file(self, file_id: str) -> bool:
        """Drop a file's access record (cascade delete). Does not persist."""
        return self._records.pop(file_id, None) is not None

    def export_table(self) -> List[AccessRecord]:
        return list(self._records.values())

    def load_table(self, records: Iterable[AccessRecord], replace: bool = False) -> None:
        if replace:
            self._records.clear()
        for record in records:
            self._records[record.file_id] = record
