from __future__ import annotations

from ..extensions import db
from oms.time_utils import to_utc_z


class SequenceBucket(db.Model):
    """
    Last issued value of one identifier sequence within one time bucket.

    ORDER buckets are calendar days (YYYYMMDD), INVOICE buckets are calendar
    months (YYYYMM). The row is read with a write lock, so allocations in the
    same bucket serialize until the allocating transaction ends.
    """
    __tablename__ = "sequence_buckets"
    __table_args__ = (
        db.UniqueConstraint("sequence_name", "bucket_key", name="uq_sequence_buckets_name_bucket"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_name = db.Column(db.String(32), nullable=False)
    bucket_key = db.Column(db.String(16), nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_name": self.sequence_name,
            "bucket_key": self.bucket_key,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }
