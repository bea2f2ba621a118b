"""
Certification registry: issuance, approval and revocation of GMO-free
certification claims.

The registry owns the counter, the authority binding, the certification
store and the audit store. Every mutating operation validates first and
writes second, so a rejected call leaves the store untouched. Results are
returned as ``Ok`` / ``Err`` values instead of raised exceptions.
"""

import enum
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

import structlog

from registry_app.auditors import BURN_PRINCIPAL, SentinelAuditorVerifier

logger = structlog.get_logger("registry_app.registry")

MAX_METADATA_LEN = 500
MAX_NOTES_LEN = 200
# Ids are unsigned 128-bit values
MAX_UINT = 2 ** 128 - 1


class Status(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REVOKED = "revoked"


class RegistryError(enum.Enum):
    """Error taxonomy; values are the wire codes."""

    NotAuthorized = 100
    InvalidFarmId = 101
    InvalidProductId = 102
    InvalidTestId = 103
    CertAlreadyExists = 105
    CertNotFound = 106
    InvalidStatus = 107
    AuditorNotVerified = 109
    InvalidMetadata = 110
    InvalidNotes = 111

    @property
    def code(self) -> int:
        return self.value


@dataclass(frozen=True)
class Ok:
    value: object
    ok = True


@dataclass(frozen=True)
class Err:
    error: RegistryError
    ok = False


Result = Union[Ok, Err]


@dataclass(frozen=True)
class Certification:
    farm_id: int
    product_id: int
    test_id: int
    status: Status
    issue_time: int
    metadata: str

    def to_dict(self) -> dict:
        return {
            "farm_id": self.farm_id,
            "product_id": self.product_id,
            "test_id": self.test_id,
            "status": self.status.value,
            "issue_time": self.issue_time,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class CertAudit:
    auditor: str
    audit_time: int
    notes: str

    def to_dict(self) -> dict:
        return {"auditor": self.auditor, "audit_time": self.audit_time, "notes": self.notes}


@dataclass(frozen=True)
class Unbound:
    pass


@dataclass(frozen=True)
class Bound:
    identity: str


AuthorityBinding = Union[Unbound, Bound]

# action -> (required status, resulting status, event name, log event)
TRANSITIONS = {
    "approve": (Status.PENDING, Status.ACTIVE, "cert-approved", "certification_approved"),
    "revoke": (Status.ACTIVE, Status.REVOKED, "cert-revoked", "certification_revoked"),
}


class MemoryRegistryStore:
    """In-process store. Writes are visible immediately; commit is a no-op."""

    def __init__(self):
        self.counter = 0
        self.authority: AuthorityBinding = Unbound()
        self._certifications = {}
        self._audits = {}

    def get_certification(self, cert_id: int) -> Optional[Certification]:
        return self._certifications.get(cert_id)

    def put_certification(self, cert_id: int, cert: Certification) -> None:
        self._certifications[cert_id] = cert

    def get_audit(self, cert_id: int) -> Optional[CertAudit]:
        return self._audits.get(cert_id)

    def put_audit(self, cert_id: int, audit: CertAudit) -> None:
        self._audits[cert_id] = audit

    def record_event(self, event: dict, height: int) -> None:
        pass

    def commit(self) -> None:
        pass


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= MAX_UINT


def _is_bounded_text(value, limit: int) -> bool:
    return isinstance(value, str) and len(value) <= limit


class CertificationRegistry:
    """
    The certification state machine.

    Args:
        store: backing store (defaults to an in-memory one)
        verifier: auditor verification capability
        event_sink: callable receiving ``{"event": name, "cert_id": id}``
            once the operation has committed

    Each event is also handed to ``store.record_event`` before the commit,
    so a transactional store persists it in the same unit of work.
    """

    def __init__(self, store=None, verifier=None, event_sink: Optional[Callable[[dict], None]] = None):
        self.store = store if store is not None else MemoryRegistryStore()
        self.verifier = verifier if verifier is not None else SentinelAuditorVerifier()
        self._event_sink = event_sink
        self._lock = threading.RLock()

    # ---------------- AUTHORITY ----------------
    def set_authority(self, identity: str) -> Result:
        with self._lock:
            if isinstance(self.store.authority, Bound):
                return self._reject("set_authority", RegistryError.NotAuthorized)
            if not isinstance(identity, str) or not identity or identity == BURN_PRINCIPAL:
                return self._reject("set_authority", RegistryError.NotAuthorized)
            self.store.authority = Bound(identity)
            self.store.commit()
            logger.info("authority_bound", authority=identity)
            return Ok(True)

    @property
    def authority(self) -> AuthorityBinding:
        with self._lock:
            return self.store.authority

    # ---------------- ISSUE ----------------
    def issue(self, farm_id: int, product_id: int, test_id: int, metadata: str,
              caller: str = "", current_time: int = 0) -> Result:
        with self._lock:
            if not isinstance(self.store.authority, Bound):
                return self._reject("issue", RegistryError.NotAuthorized)
            if not _is_positive_int(farm_id):
                return self._reject("issue", RegistryError.InvalidFarmId)
            if not _is_positive_int(product_id):
                return self._reject("issue", RegistryError.InvalidProductId)
            if not _is_positive_int(test_id):
                return self._reject("issue", RegistryError.InvalidTestId)
            if not _is_bounded_text(metadata, MAX_METADATA_LEN):
                return self._reject("issue", RegistryError.InvalidMetadata)

            cert_id = self.store.counter + 1
            if self.store.get_certification(cert_id) is not None:
                return self._reject("issue", RegistryError.CertAlreadyExists, cert_id=cert_id)

            self.store.put_certification(cert_id, Certification(
                farm_id=farm_id,
                product_id=product_id,
                test_id=test_id,
                status=Status.PENDING,
                issue_time=current_time,
                metadata=metadata,
            ))
            self.store.counter = cert_id
            event = {"event": "cert-issued", "cert_id": cert_id}
            self.store.record_event(event, current_time)
            self.store.commit()

            logger.info("certification_issued", cert_id=cert_id, caller=caller, height=current_time)
            self._emit(event)
            return Ok(cert_id)

    # ---------------- APPROVE / REVOKE ----------------
    def approve(self, cert_id: int, notes: str, caller: str, current_time: int = 0) -> Result:
        return self._transition("approve", cert_id, notes, caller, current_time)

    def revoke(self, cert_id: int, notes: str, caller: str, current_time: int = 0) -> Result:
        return self._transition("revoke", cert_id, notes, caller, current_time)

    def _transition(self, action: str, cert_id: int, notes: str, caller: str, current_time: int) -> Result:
        required, target, event_name, log_event = TRANSITIONS[action]
        with self._lock:
            cert = self.store.get_certification(cert_id)
            if cert is None:
                return self._reject(action, RegistryError.CertNotFound, cert_id=cert_id)
            if not self.verifier.is_auditor_verified(caller):
                return self._reject(action, RegistryError.AuditorNotVerified, cert_id=cert_id, caller=caller)
            if cert.status is not required:
                return self._reject(action, RegistryError.InvalidStatus, cert_id=cert_id, status=cert.status.value)
            if not _is_bounded_text(notes, MAX_NOTES_LEN):
                return self._reject(action, RegistryError.InvalidNotes, cert_id=cert_id)

            # issue_time tracks the latest status change, not first issuance
            self.store.put_certification(cert_id, replace(cert, status=target, issue_time=current_time))
            self.store.put_audit(cert_id, CertAudit(auditor=caller, audit_time=current_time, notes=notes))
            event = {"event": event_name, "cert_id": cert_id}
            self.store.record_event(event, current_time)
            self.store.commit()

            logger.info(log_event, cert_id=cert_id, auditor=caller, height=current_time)
            self._emit(event)
            return Ok(True)

    # ---------------- READS ----------------
    def get_certification(self, cert_id: int) -> Optional[Certification]:
        with self._lock:
            return self.store.get_certification(cert_id)

    def get_cert_audit(self, cert_id: int) -> Optional[CertAudit]:
        with self._lock:
            return self.store.get_audit(cert_id)

    def get_counter(self) -> int:
        with self._lock:
            return self.store.counter

    # ---------------- INTERNAL ----------------
    def _emit(self, event: dict) -> None:
        if self._event_sink is not None:
            self._event_sink(dict(event))

    @staticmethod
    def _reject(operation: str, error: RegistryError, **context) -> Err:
        logger.info("operation_rejected", operation=operation, error=error.name, code=error.code, **context)
        return Err(error)
