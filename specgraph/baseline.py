"""Baseline store: last-cascaded text of each document, keyed by ref."""

import logging
import os

from specgraph.document import write_atomic

log = logging.getLogger("spec-graph.baseline")

STATE_DIR = ".specgraph"
SUFFIX = ".baseline"


class BaselineStore:

    def __init__(self, root):
        self.cache_dir = os.path.join(os.path.abspath(root), STATE_DIR, "cache")

    def path(self, ref):
        return os.path.join(self.cache_dir, ref + SUFFIX)

    def load(self, ref):
        """Stored text for ref, or None when no baseline exists ("" is a valid baseline)."""
        path = self.path(ref)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    def save(self, ref, content):
        write_atomic(self.path(ref), content)
        log.debug("Updated baseline for %s", ref)

    def delete(self, ref):
        path = self.path(ref)
        if os.path.exists(path):
            os.remove(path)
            return True
        return False

    def refs(self):
        if not os.path.isdir(self.cache_dir):
            return []
        return sorted(name[:-len(SUFFIX)] for name in os.listdir(self.cache_dir) if name.endswith(SUFFIX))
