"""Time-partitioned archival keys."""

from datetime import datetime, timezone

from cdc_fanout.models.enums import EntityKind
from cdc_fanout.pipeline.clock import EPOCH, ONE_MS


def archival_key(
    entity_kind: EntityKind,
    tenant_id: str,
    entity_id: str,
    occurred_at: datetime,
) -> str:
    """Build ``<kind>/year=YYYY/month=MM/day=DD/hour=HH/<tenant>_<entity>_<millis>``.

    Partitions are computed in UTC. The epoch-millis suffix keeps repeated
    events for one entity in the same hour from overwriting each other.

    Examples
    --------
    >>> from datetime import datetime, timezone
    >>> archival_key(EntityKind.PRODUCT, "T1", "P1", datetime(2024, 3, 5, 7, tzinfo=timezone.utc))
    'products/year=2024/month=03/day=05/hour=07/T1_P1_1709622000000'
    """
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    at = occurred_at.astimezone(timezone.utc)
    millis = (at - EPOCH) // ONE_MS

    return (
        f"{entity_kind.collection}/"
        f"year={at.year:04d}/month={at.month:02d}/day={at.day:02d}/hour={at.hour:02d}/"
        f"{tenant_id}_{entity_id}_{millis}"
    )
