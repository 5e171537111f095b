"""
Fixtures for pytest: small graphs written to tmp_path and helpers to read
back an iteration directory.
"""
import logging
import math
import os

import pytest

from schimmy_hits.driver import iteration_path
from schimmy_hits.mr_build_graph import build_graph
from schimmy_hits.records import list_part_files
from schimmy_hits.records import read_records

# 1 -> 2 -> 3: node 1 has no in-links, node 3 has no out-links
DANGLING_EDGES = '1 2\n2 3\n'

# small enough to check by hand, big enough to spread over partitions
WEB_EDGES = '''\
0 1 2 3
1 2 4
2 0 3
3 4
4 1 5
5 0 2 4
6 5
'''


def write_adjacency(directory, text, name='graph.txt'):
    path = os.path.join(str(directory), name)
    with open(path, 'w') as f:
        f.write(text)
    return path


def read_iteration(path):
    """``{(node_id, 'H' or 'A'): record}`` for every record under *path*."""
    records = {}
    for part in list_part_files(path):
        for record in read_records(part):
            records[(record.node_id, record.kind.tag)] = record
    return records


def linear_ranks(records, tag):
    """``{node_id: exp(rank)}`` for one role."""
    return {node_id: math.exp(record.rank)
                for (node_id, t), record in records.items() if t == tag}


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging() replaces the root handlers; put them back after each
    test so pytest's own capture keeps working."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level

    yield

    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


@pytest.fixture
def dangling_graph(tmp_path):
    """Run directory whose iter0000 holds the three node chain 1 -> 2 -> 3."""
    base_path = str(tmp_path / 'run')
    adjacency = write_adjacency(tmp_path, DANGLING_EDGES)
    build_graph([adjacency], iteration_path(base_path, 0))
    return base_path


@pytest.fixture
def make_web_graph(tmp_path):
    """Factory: a run directory for WEB_EDGES built with the given
    partitioning. Each call gets its own directory."""
    counter = [0]

    def make(num_partitions=1, use_range=False):
        counter[0] += 1
        base_path = str(tmp_path / ('run%d' % counter[0]))
        adjacency = write_adjacency(tmp_path, WEB_EDGES)
        build_graph([adjacency], iteration_path(base_path, 0),
                    num_partitions=num_partitions, use_range=use_range,
                    node_count=7)
        return base_path

    return make
