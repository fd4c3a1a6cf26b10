"""
Processing module for the conversion system.

This module provides the paged concurrent exporter, the batch-transactional
importer and the helpers they share (sub-table preloading, bounded sub-tree
fan-out).
"""

from .exporter import DocumentExporter, NodeSpec
from .importer import DocumentImporter
from .sub_table_preloader import SubTablePreloader
from .subtree_dispatcher import SubtreeDispatcher, DispatchStats

__all__ = [
    'DocumentExporter',
    'NodeSpec',
    'DocumentImporter',
    'SubTablePreloader',
    'SubtreeDispatcher',
    'DispatchStats'
]
