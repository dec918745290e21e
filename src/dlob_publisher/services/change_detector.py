"""Change detection - suppresses republishing an unchanged ladder."""

import hashlib
import json

from dlob_publisher.domain.market import MarketDescriptor, PublishMode
from dlob_publisher.domain.orderbook import FormattedSnapshot
from dlob_publisher.services.consistency import MarketStateTable


def ladder_digest(formatted: FormattedSnapshot) -> str:
    """sha256 over the canonical JSON of the bids and asks."""
    canonical = json.dumps(
        formatted.ladder_payload(),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ChangeDetector:
    """Decides whether a formatted ladder should be published.

    The digest is stored as soon as the answer is yes, before anything is
    written to the sink. A failed publish is therefore not retried on the next
    cycle when the ladder is unchanged; suppression is best-effort.
    """

    def __init__(self, state_table: MarketStateTable) -> None:
        self._states = state_table

    def should_publish(
        self,
        descriptor: MarketDescriptor,
        formatted: FormattedSnapshot,
        mode: PublishMode,
    ) -> bool:
        state = self._states.get_or_create(descriptor.key)
        digest = ladder_digest(formatted)

        if mode == PublishMode.ON_CHANGE and state.last_formatted_hash == digest:
            return False

        state.last_formatted_hash = digest
        return True
