from datetime import datetime, timezone

import structlog
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.types import String, TypeDecorator
import uuid

from registry_app.crypto_utils import seal_event, open_event, sha256_hash
from registry_app.registry import Bound, Unbound, Certification, CertAudit, Status

db = SQLAlchemy()
logger = structlog.get_logger("registry_app.database")

STATE_ROW_ID = 1

def uid():
    return str(uuid.uuid4())

def utc_now():
    return datetime.now(timezone.utc)


class Uint128(TypeDecorator):
    """Unsigned 128-bit id stored as exact decimal text; native INTEGER
    columns stop at signed 64 bits."""
    impl = String(39)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else int(value)


class RegistryState(db.Model):
    """Scalar registry state: the id counter and the authority binding."""
    id = db.Column(db.Integer, primary_key=True)
    cert_counter = db.Column(db.Integer, nullable=False, default=0)
    authority = db.Column(db.String(150), nullable=True)


class CertificationRecord(db.Model):
    __tablename__ = "certification"

    cert_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    farm_id = db.Column(Uint128, nullable=False)
    product_id = db.Column(Uint128, nullable=False)
    test_id = db.Column(Uint128, nullable=False)
    status = db.Column(db.String(10), nullable=False, default=Status.PENDING.value)
    issue_time = db.Column(db.Integer, nullable=False)
    # "metadata" is reserved on declarative models
    cert_metadata = db.Column("metadata", db.Text, nullable=False, default="")


class CertAuditRecord(db.Model):
    __tablename__ = "cert_audit"

    cert_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    auditor = db.Column(db.String(150), nullable=False)
    audit_time = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=False, default="")


class EventLog(db.Model):
    id = db.Column(db.String, primary_key=True, default=uid)
    encrypted_event = db.Column(db.LargeBinary, nullable=False)
    payload_hash = db.Column(db.String(64), nullable=False)
    height = db.Column(db.Integer, nullable=False)
    timestamp = db.Column(db.DateTime, default=utc_now)


class SqlRegistryStore:
    """Registry store backed by the SQLAlchemy session.

    Writes are staged on the session and only become durable in ``commit``.
    With a ``journal``, recorded events are staged on the same session.
    """

    def __init__(self, session=None, journal=None):
        self.session = session if session is not None else db.session
        self.journal = journal

    def _state(self):
        state = self.session.get(RegistryState, STATE_ROW_ID)
        if state is None:
            state = RegistryState(id=STATE_ROW_ID, cert_counter=0)
            self.session.add(state)
        return state

    @property
    def counter(self):
        return self._state().cert_counter

    @counter.setter
    def counter(self, value):
        self._state().cert_counter = value

    @property
    def authority(self):
        identity = self._state().authority
        return Bound(identity) if identity else Unbound()

    @authority.setter
    def authority(self, binding):
        self._state().authority = binding.identity if isinstance(binding, Bound) else None

    def get_certification(self, cert_id):
        row = self.session.get(CertificationRecord, cert_id)
        if row is None:
            return None
        return Certification(
            farm_id=row.farm_id,
            product_id=row.product_id,
            test_id=row.test_id,
            status=Status(row.status),
            issue_time=row.issue_time,
            metadata=row.cert_metadata,
        )

    def put_certification(self, cert_id, cert):
        row = self.session.get(CertificationRecord, cert_id) or CertificationRecord(cert_id=cert_id)
        row.farm_id = cert.farm_id
        row.product_id = cert.product_id
        row.test_id = cert.test_id
        row.status = cert.status.value
        row.issue_time = cert.issue_time
        row.cert_metadata = cert.metadata
        self.session.add(row)

    def get_audit(self, cert_id):
        row = self.session.get(CertAuditRecord, cert_id)
        if row is None:
            return None
        return CertAudit(auditor=row.auditor, audit_time=row.audit_time, notes=row.notes)

    def put_audit(self, cert_id, audit):
        row = self.session.get(CertAuditRecord, cert_id) or CertAuditRecord(cert_id=cert_id)
        row.auditor = audit.auditor
        row.audit_time = audit.audit_time
        row.notes = audit.notes
        self.session.add(row)

    def record_event(self, event, height):
        if self.journal is not None:
            self.journal.stage(event, height, self.session)

    def commit(self):
        """Commit staged state and events together; on any failure roll the
        whole unit back so the session stays usable."""
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("registry_commit_failed")
            raise

    def latest_height(self):
        """Highest time marker recorded so far; seeds the block clock."""
        issued = self.session.query(db.func.max(CertificationRecord.issue_time)).scalar() or 0
        audited = self.session.query(db.func.max(CertAuditRecord.audit_time)).scalar() or 0
        return max(issued, audited)


class EncryptedEventJournal:
    """Appends each registry event, Fernet-encrypted, to the ``event_log``
    table for external indexers. Rows are staged on the store's session and
    commit with the state change they describe."""

    def __init__(self, cipher, session=None):
        self.cipher = cipher
        self.session = session if session is not None else db.session

    def stage(self, event, height, session=None):
        session = session if session is not None else self.session
        session.add(EventLog(
            encrypted_event=seal_event(event, self.cipher),
            payload_hash=sha256_hash(f"{event['event']}|{event['cert_id']}|{height}"),
            height=height,
        ))

    def read_all(self):
        rows = self.session.query(EventLog).order_by(EventLog.height, EventLog.timestamp).all()
        return [open_event(row.encrypted_event, self.cipher) for row in rows]
