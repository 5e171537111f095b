"""One HITS iteration: send mass along edges, then rebuild every node by
merge-joining the sorted messages with the partition's own structure file.

The adjacency lists never go through the shuffle (unless ``--basic`` is
given); each reduce task reads them back from the structure file of its
partition, in lock-step with the incoming keys.
"""
import logging

from mrjob.step import MRStep

from schimmy_hits.accumulator import MassAccumulator
from schimmy_hits.errors import HitsError
from schimmy_hits.errors import SchimmyMergeError
from schimmy_hits.job import HitsJob
from schimmy_hits.logmath import NEG_INF
from schimmy_hits.logmath import sum_log_probs
from schimmy_hits.partitioner import PartitionAssignment
from schimmy_hits.records import NodeRecord
from schimmy_hits.records import read_records

log = logging.getLogger(__name__)


class StructureCursor:
    """Forward-only reader over one partition's structure records.

    Raises :py:class:`SchimmyMergeError` as soon as the records go
    backwards, so an unsorted file is caught at the point it is read.
    """

    def __init__(self, records, partition=None, path=None):
        self._records = iter(records)
        self._next = None
        self._last_key = None
        self.partition = partition
        self.path = path
        self.skipped = 0
        self._advance()

    def _advance(self):
        record = next(self._records, None)
        if record is not None:
            if self._last_key is not None and record.node_id < self._last_key:
                raise SchimmyMergeError(
                    'structure file %s is not sorted' % self.path,
                    partition=self.partition, key=self._last_key,
                    structure_key=record.node_id)
            self._last_key = record.node_id
        self._next = record

    def peek(self):
        return self._next

    def take(self, key):
        """Skip records below *key* and return the ones equal to it.

        Nodes are sorted within each partition, so reaching a larger key (or
        the end of the file) before *key* means messages and structure were
        partitioned differently.
        """
        while self._next is not None and self._next.node_id < key:
            self.skipped += 1
            self._advance()

        if self._next is None:
            raise SchimmyMergeError(
                'structure file %s exhausted before message key' % self.path,
                partition=self.partition, key=key)

        if self._next.node_id > key:
            raise SchimmyMergeError(
                'Unexpected Schimmy failure during merge',
                partition=self.partition, key=key,
                structure_key=self._next.node_id)

        matched = []
        while self._next is not None and self._next.node_id == key:
            matched.append(self._next)
            self._advance()
        return matched

    def drain(self):
        """Read to the end of the file; returns how many records were left."""
        count = 0
        while self._next is not None:
            count += 1
            self._advance()
        return count

    def close(self):
        close = getattr(self._records, 'close', None)
        if close is not None:
            close()


class MRHitsSchimmy(HitsJob):

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._accumulator = None
        self._structure = None
        self._last_key = None

    def configure_args(self):
        super().configure_args()

        self.add_passthru_arg(
            '--basic', dest='basic', action='store_true', default=False,
            help='shuffle adjacency lists instead of reading structure files')

        self.add_passthru_arg(
            '--partition-mapping', dest='partition_mapping', default=None,
            help='JSON object mapping partition index to structure file')

    def _node_role(self, node):
        """True for a hub record, False for an authority record."""
        if not node.kind.is_complete:
            raise HitsError('node %d: expected a complete record, got %s' % (
                node.node_id, node.kind.name))
        return node.kind.is_hub

    def _merge_partition(self):
        if self._structure is not None:
            return self._structure.partition
        return self.options.task_partition

    # COMPUTE
    def mapper_emit_mass(self, _, node):
        """
        Mapper: send a node's previous rank along its edges.
        Input: a hub or authority record with its adjacency list.
        Output:
            1. (node, *_STRUCTURE) with the adjacency list, in --basic mode only.
            2. (node, same-role mass) carrying the node's own rank.
            3. (neighbor, opposite-role mass) for every adjacency entry:
               hubs feed the authority score of the pages they link to,
               authorities feed the hub score of the pages linking to them.
        """
        hub = self._node_role(node)

        if self.options.basic:
            yield node.node_id, NodeRecord.structure(
                node.node_id, hub, node.adjacency)

        yield node.node_id, NodeRecord.mass(node.node_id, hub, node.rank)

        for neighbor in node.adjacency:
            yield neighbor, NodeRecord.mass(neighbor, not hub, node.rank)

    def mapper_init_combine(self):
        self._accumulator = MassAccumulator()

    def mapper_emit_mass_combining(self, _, node):
        """
        Mapper with in-mapper combining: the same mass as
        :py:meth:`mapper_emit_mass`, summed per node for the whole task and
        only emitted by :py:meth:`mapper_final_flush_mass`.
        """
        hub = self._node_role(node)

        if self.options.basic:
            yield node.node_id, NodeRecord.structure(
                node.node_id, hub, node.adjacency)

        self._accumulator.add(node.node_id, hub, node.rank)
        for neighbor in node.adjacency:
            self._accumulator.add(neighbor, not hub, node.rank)

    def mapper_final_flush_mass(self):
        self.increment_counter('hits', 'mass added in mapper',
                               self._accumulator.added)
        self.increment_counter('hits', 'mass emitted by mapper',
                               len(self._accumulator))
        for node_id, mass in self._accumulator.flush():
            yield node_id, mass

    def combiner_sum_mass(self, node_id, messages):
        """
        Combiner: log-sum the mass for one node seen by one map task.
        Structure messages pass through untouched.
        """
        accumulator = MassAccumulator()
        for message in messages:
            if message.kind.is_mass:
                accumulator.add_record(message)
            else:
                yield node_id, message

        for key, mass in accumulator.flush():
            yield key, mass

    # MERGE
    def reducer_init_open_structure(self):
        partition = self.task_partition()
        assignment = PartitionAssignment.from_json(
            self.options.partition_mapping or '{}')
        path = assignment.path_for(partition)

        log.info('partition %d reads structure from %s', partition, path)

        records = read_records(path) if path else ()
        self._structure = StructureCursor(records, partition, path)

        # the file must hold this partition's nodes, or the merge can't work
        first = self._structure.peek()
        if first is not None:
            owner = self.partitioner().partition(
                first.node_id, self.options.num_partitions)
            if owner != partition:
                self._structure.close()
                raise SchimmyMergeError(
                    'structure file %s belongs to partition %d' % (
                        path, owner),
                    partition=partition, structure_key=first.node_id)

    def reducer_merge_mass(self, node_id, messages):
        """
        Reducer: sum the mass sent to one node and rebuild its records.
        Input: key=node id, value=iterator of mass (and, in --basic mode,
            structure) messages.
        Output: (node, HUB_COMPLETE) and (node, AUTH_COMPLETE) with the new
            log-domain ranks and the adjacency lists carried forward.
        """
        if self._last_key is not None and node_id <= self._last_key:
            raise SchimmyMergeError(
                'message keys out of order',
                partition=self._merge_partition(), key=node_id,
                structure_key=self._last_key)
        self._last_key = node_id

        hub_rank = NEG_INF
        auth_rank = NEG_INF
        hub_adjacency = ()
        auth_adjacency = ()

        for message in messages:
            if message.kind.is_mass:
                if message.kind.is_hub:
                    hub_rank = sum_log_probs(hub_rank, message.rank)
                else:
                    auth_rank = sum_log_probs(auth_rank, message.rank)
            elif message.kind.is_structure:
                if message.kind.is_hub:
                    hub_adjacency = message.adjacency
                else:
                    auth_adjacency = message.adjacency
            else:
                raise HitsError('node %d: complete record in message stream'
                                % node_id)

        if self._structure is not None:
            seen = set()
            for record in self._structure.take(node_id):
                if record.kind.is_mass or record.kind.tag in seen:
                    raise SchimmyMergeError(
                        'unexpected %s record in structure file' %
                        record.kind.name,
                        partition=self._structure.partition, key=node_id,
                        structure_key=record.node_id)
                seen.add(record.kind.tag)
                if record.kind.is_hub:
                    hub_adjacency = record.adjacency
                else:
                    auth_adjacency = record.adjacency

        # first iteration only: nodes without in or out links start at 0
        if self.options.iteration == 0:
            if hub_rank == NEG_INF:
                hub_rank = 0.0
            if auth_rank == NEG_INF:
                auth_rank = 0.0

        yield node_id, NodeRecord.complete(
            node_id, True, hub_rank, hub_adjacency)
        yield node_id, NodeRecord.complete(
            node_id, False, auth_rank, auth_adjacency)

    def reducer_final_close_structure(self):
        try:
            unmatched = self._structure.skipped + self._structure.drain()
        finally:
            self._structure.close()

        if unmatched:
            log.warning('partition %d: %d structure records received no'
                        ' messages', self._structure.partition, unmatched)
            self.increment_counter('hits', 'structure without messages',
                                   unmatched)

    def steps(self):
        step = dict(mapper=self.mapper_emit_mass,
                    reducer=self.reducer_merge_mass)

        if self.options.use_in_mapper_combiner:
            step['mapper_init'] = self.mapper_init_combine
            step['mapper'] = self.mapper_emit_mass_combining
            step['mapper_final'] = self.mapper_final_flush_mass

        if self.options.use_combiner:
            step['combiner'] = self.combiner_sum_mass

        if not self.options.basic:
            step['reducer_init'] = self.reducer_init_open_structure
            step['reducer_final'] = self.reducer_final_close_structure

        return [MRStep(**step)]


if __name__ == '__main__':
    MRHitsSchimmy.run()
