"""Kleinberg's Hubs and Authorities (HITS) on mrjob, with Schimmy
merge-joins so adjacency lists never pass through the shuffle."""
__version__ = '0.1.0'
