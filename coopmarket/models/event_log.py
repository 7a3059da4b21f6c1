from tortoise import fields, models


class EventLog(models.Model):
    """
    Append-only, hash-chained record of every state change.

    The unique (aggregate_id, aggregate_type, version) constraint is the only
    serialization point for concurrent appends to the same aggregate.
    Rows are never updated or deleted by application code.
    """
    id = fields.CharField(max_length=36, primary_key=True)
    event_type = fields.CharField(max_length=100)  # e.g., 'order.created'
    aggregate_id = fields.CharField(max_length=64)
    aggregate_type = fields.CharField(max_length=50)  # e.g., 'order', 'payment'
    version = fields.IntField()
    actor_id = fields.CharField(max_length=64)
    actor_role = fields.CharField(max_length=20)
    data = fields.JSONField()
    previous_hash = fields.CharField(max_length=64, null=True)
    hash = fields.CharField(max_length=64)
    # Hash input; kept as text so it reads back byte-identical.
    occurred_at = fields.CharField(max_length=32)
    recorded_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "event_log"
        unique_together = (("aggregate_id", "aggregate_type", "version"),)
        indexes = [
            ("event_type",),
            ("recorded_at",),
        ]
