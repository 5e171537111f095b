"""In-mapper combining of mass messages."""
from schimmy_hits.logmath import sum_log_probs
from schimmy_hits.records import NodeRecord


class MassAccumulator:
    """Per-task running log-domain sums of hub and authority mass.

    Build one per map task, :py:meth:`add` mass as the mapper would have
    emitted it, and :py:meth:`flush` once at the end of the task to get one
    combined mass record per distinct node and role.
    """

    def __init__(self):
        self._hub = {}
        self._auth = {}
        self.added = 0

    def add(self, node_id, hub, rank):
        sums = self._hub if hub else self._auth
        if node_id in sums:
            sums[node_id] = sum_log_probs(sums[node_id], rank)
        else:
            sums[node_id] = rank
        self.added += 1

    def add_record(self, record):
        self.add(record.node_id, record.kind.is_hub, record.rank)

    def flush(self):
        """Yield ``(node_id, mass_record)`` for everything accumulated, hub
        mass first, then clear."""
        for node_id, rank in self._hub.items():
            yield node_id, NodeRecord.mass(node_id, True, rank)
        for node_id, rank in self._auth.items():
            yield node_id, NodeRecord.mass(node_id, False, rank)

        self._hub.clear()
        self._auth.clear()
        self.added = 0

    def __len__(self):
        return len(self._hub) + len(self._auth)
