"""Document graph and reference resolver.

Loads every spec document in a workspace, builds the depends-on/references
graph on demand, and validates declared references and in-text mentions.
"""

import glob
import logging
import os
from dataclasses import dataclass, field

from specgraph.document import (
    CONOPS,
    PHASE_DIRS,
    PHASE_SUFFIX,
    SUFFIX_PHASE,
    check_metadata,
    load_document,
    make_ref,
    ref_from_path,
    split_ref,
)
from specgraph.errors import UnreadableDocumentError
from specgraph.refs import canonical_ref, is_canonical, is_over_specified

log = logging.getLogger("spec-graph.graph")

DEPENDS_ON = "depends-on"
REFERENCES = "references"


@dataclass
class Finding:
    ref: str
    code: str
    message: str
    severity: str = "error"

    def __str__(self):
        return f"{self.ref} [{self.code}]: {self.message}"


@dataclass
class Closure:
    refs: set = field(default_factory=set)
    cyclic: bool = False


# ---------------------------------------------------------------------------
# Workspace loading
# ---------------------------------------------------------------------------

class Workspace:
    """All spec documents under <root>/specs, keyed by ref."""

    def __init__(self, root, documents=None):
        self.root = os.path.abspath(root)
        self.specs_dir = os.path.join(self.root, "specs")
        self.documents = documents if documents is not None else {}
        self.unreadable = []

    @classmethod
    def load(cls, root):
        ws = cls(root)
        for phase, subdir in PHASE_DIRS.items():
            pattern = os.path.join(ws.specs_dir, subdir, f"*.{PHASE_SUFFIX[phase]}.md")
            for filepath in sorted(glob.glob(pattern)):
                ws._load(filepath)
        conops = os.path.join(ws.specs_dir, f"{CONOPS}.md")
        if os.path.exists(conops):
            ws._load(conops)
        log.debug("Loaded %d document(s) from %s", len(ws.documents), ws.specs_dir)
        return ws

    def _load(self, filepath):
        try:
            self.add(load_document(filepath))
        except UnreadableDocumentError as e:
            log.warning("Skipping %s", e)
            self.unreadable.append(
                Finding(ref_from_path(filepath), "encoding", f"not valid UTF-8 text ({e.reason})"))

    def add(self, doc):
        self.documents[doc.ref] = doc

    def get(self, ref):
        return self.documents.get(ref)

    def phase_document(self, artifact, phase):
        return self.documents.get(make_ref(artifact, phase))

    def resolve_path(self, ref):
        """Path a canonical ref lives at, whether or not the file exists."""
        if ref == CONOPS:
            return os.path.join(self.specs_dir, f"{CONOPS}.md")
        artifact, phase = split_ref(ref)
        if phase:
            return os.path.join(self.specs_dir, PHASE_DIRS[phase], f"{ref}.md")
        return os.path.join(self.specs_dir, f"{ref}.md")

    def find(self, ref_or_path):
        """Look up a document by ref or by file path."""
        if ref_or_path in self.documents:
            return self.documents[ref_or_path]
        target = os.path.abspath(ref_or_path)
        for doc in self.documents.values():
            if doc.path and os.path.abspath(doc.path) == target:
                return doc
        return None

    def refs(self):
        return sorted(self.documents)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class DependencyGraph:
    """Directed graph over an arena of document ids.

    ``nodes`` is the arena, ``edges`` a list of (src, dst, kind) index
    triples. Edges to ids with no document are kept in ``dangling``.
    """

    def __init__(self):
        self.nodes = []
        self.index = {}
        self.edges = []
        self.dangling = []

    @classmethod
    def from_workspace(cls, workspace):
        g = cls()
        for ref in workspace.refs():
            g.add_node(ref)
        for ref in workspace.refs():
            meta = workspace.get(ref).metadata
            if meta is None:
                continue
            for dep in meta.depends_on:
                g.add_edge(ref, dep, DEPENDS_ON)
            for other in meta.references:
                g.add_edge(ref, other, REFERENCES)
        return g

    def add_node(self, ref):
        if ref not in self.index:
            self.index[ref] = len(self.nodes)
            self.nodes.append(ref)
        return self.index[ref]

    def add_edge(self, src, dst, kind=DEPENDS_ON):
        if dst not in self.index:
            self.dangling.append((src, dst, kind))
            return
        self.edges.append((self.add_node(src), self.index[dst], kind))

    def _adjacency(self, kind=DEPENDS_ON):
        adj = [[] for _ in self.nodes]
        for src, dst, k in self.edges:
            if k == kind:
                adj[src].append(dst)
        return adj

    def depends_on(self, ref):
        if ref not in self.index:
            return []
        adj = self._adjacency()
        return [self.nodes[i] for i in adj[self.index[ref]]]

    def dependents(self, ref):
        """Ids whose depends-on includes ref."""
        if ref not in self.index:
            return []
        target = self.index[ref]
        return [self.nodes[src] for src, dst, k in self.edges if k == DEPENDS_ON and dst == target]

    def all_dependencies(self, ref):
        """Transitive depends-on closure of ref.

        Iterative DFS with an explicit on-path set. The start node is left out
        unless the traversal gets back to it, in which case it is included and
        the closure is flagged cyclic. Any other back-edge stops that branch.
        """
        if ref not in self.index:
            return Closure()
        adj = self._adjacency()
        start = self.index[ref]
        reached = set()
        cyclic = False
        visited = {start}
        on_path = {start}
        stack = [(start, iter(adj[start]))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                on_path.discard(node)
                continue
            reached.add(child)
            if child == start:
                cyclic = True
                continue
            if child in on_path or child in visited:
                continue
            visited.add(child)
            on_path.add(child)
            stack.append((child, iter(adj[child])))
        return Closure(refs={self.nodes[i] for i in reached}, cyclic=cyclic)

    def would_create_cycle(self, ref, dep):
        """True when adding ``ref depends-on dep`` would make ref reachable from itself."""
        if dep == ref:
            return True
        return ref in self.all_dependencies(dep).refs

    def find_cycles(self):
        """Every depends-on cycle, each reported once as a list of ids (first id repeated last)."""
        adj = self._adjacency()
        WHITE, GRAY, BLACK = 0, 1, 2
        color = [WHITE] * len(self.nodes)
        cycles = []
        for root in range(len(self.nodes)):
            if color[root] != WHITE:
                continue
            path = [root]
            color[root] = GRAY
            stack = [iter(adj[root])]
            while stack:
                v = next(stack[-1], None)
                if v is None:
                    stack.pop()
                    color[path.pop()] = BLACK
                    continue
                if color[v] == GRAY:
                    cycle = path[path.index(v):] + [v]
                    cycles.append([self.nodes[i] for i in cycle])
                elif color[v] == WHITE:
                    color[v] = GRAY
                    path.append(v)
                    stack.append(iter(adj[v]))
        return cycles


# ---------------------------------------------------------------------------
# Reference validation
# ---------------------------------------------------------------------------

def validate_references(doc, workspace, graph=None):
    """Validate one document's declared references and in-text mentions.

    Returns (errors, warnings) as lists of Finding. Every check runs
    independently; nothing here raises.
    """
    errors = []
    warnings = []
    meta = doc.metadata
    if meta is None:
        errors.append(Finding(doc.ref, "metadata", "missing or malformed metadata header"))
        return errors, warnings

    graph = graph or DependencyGraph.from_workspace(workspace)
    me = doc.ref
    is_conops = me == CONOPS

    # 1. depends-on
    for dep in meta.depends_on:
        if dep == me or canonical_ref(dep) == me:
            errors.append(Finding(me, "self-reference", "cannot depend on itself"))
            continue
        if is_conops:
            errors.append(Finding(me, "conops", f"ConOps should not have dependencies ('{dep}')"))
            continue
        if not is_canonical(dep):
            if is_over_specified(dep):
                warnings.append(Finding(me, "over-specified",
                                        f"depends-on '{dep}' is over-specified; use '{canonical_ref(dep)}'",
                                        "warning"))
                dep = canonical_ref(dep)
            else:
                errors.append(Finding(me, "invalid-ref", f"depends-on '{dep}' is not an artifact.phase reference"))
                continue
        if workspace.get(dep) is None:
            errors.append(Finding(me, "missing-target", f"dependency '{dep}' not found"))
        elif me in graph.all_dependencies(dep).refs:
            errors.append(Finding(me, "cycle", f"dependency '{dep}' creates a circular dependency"))

    # 2. references
    for ref in meta.references:
        if ref == me or canonical_ref(ref) == me:
            errors.append(Finding(me, "self-reference", "cannot reference itself"))
            continue
        if not is_canonical(ref):
            if is_over_specified(ref):
                warnings.append(Finding(me, "over-specified",
                                        f"reference '{ref}' is over-specified; use '{canonical_ref(ref)}'",
                                        "warning"))
                ref = canonical_ref(ref)
            else:
                errors.append(Finding(me, "invalid-ref", f"reference '{ref}' is not an artifact.phase reference"))
                continue
        if workspace.get(ref) is None:
            errors.append(Finding(me, "missing-target", f"reference '{ref}' not found"))
            continue
        if me in graph.all_dependencies(ref).refs:
            errors.append(Finding(me, "cycle", f"cannot reference '{ref}' which depends on this document"))
        if is_conops and not ref.endswith(".req"):
            errors.append(Finding(me, "conops", f"ConOps can only reference .req files, not '{ref}'"))

    # 3. In-text mentions
    for mention in doc.mentions:
        base = canonical_ref(mention)
        if base is None:
            # Plain @word with no phase: not an artifact mention
            continue
        if mention != base:
            warnings.append(Finding(me, "over-specified",
                                    f"mention '@{mention}' is over-specified; use '@{base}'", "warning"))
        if base == me:
            errors.append(Finding(me, "self-reference", "cannot reference itself"))
            continue
        if workspace.get(base) is None:
            errors.append(Finding(me, "missing-target", f"mention '@{base}' not found"))
        elif me in graph.all_dependencies(base).refs:
            errors.append(Finding(me, "cycle", f"cannot mention '@{base}' which depends on this document"))

    # 4. Declared lists vs mentions
    mentioned = {canonical_ref(m) for m in doc.mentions}
    for ref in meta.references:
        if canonical_ref(ref) not in mentioned:
            warnings.append(Finding(me, "unmentioned", f"reference '{ref}' is listed but not mentioned in content",
                                    "warning"))
    for dep in meta.depends_on:
        if canonical_ref(dep) not in mentioned:
            warnings.append(Finding(me, "unmentioned", f"depends-on '{dep}' has no corresponding mention in content",
                                    "warning"))

    return errors, warnings


def validate_workspace(workspace):
    """Validate every document plus graph-wide cycles. Returns (errors, warnings)."""
    errors = []
    warnings = []
    graph = DependencyGraph.from_workspace(workspace)

    errors.extend(workspace.unreadable)
    for ref in workspace.refs():
        doc = workspace.get(ref)
        for problem in check_metadata(doc):
            errors.append(Finding(ref, "metadata", problem))
        if doc.metadata is None:
            continue
        doc_errors, doc_warnings = validate_references(doc, workspace, graph)
        errors.extend(doc_errors)
        warnings.extend(doc_warnings)

    for cycle in graph.find_cycles():
        errors.append(Finding(cycle[0], "cycle", f"cycle detected: {' → '.join(cycle)}"))

    return errors, warnings


def validate_new_dependency(ref, dep, workspace):
    """Pre-validate adding ``dep`` to ref's depends-on. Returns list of Finding."""
    errors = []
    if dep == ref or canonical_ref(dep) == ref:
        errors.append(Finding(ref, "self-reference", "cannot depend on itself"))
        return errors
    target = canonical_ref(dep) or dep
    if workspace.get(target) is None:
        errors.append(Finding(ref, "missing-target", f"dependency '{dep}' not found"))
        return errors
    graph = DependencyGraph.from_workspace(workspace)
    if graph.would_create_cycle(ref, target):
        errors.append(Finding(ref, "cycle", f"adding '{target}' would create a cycle"))
    return errors


def dependency_candidates(ref, workspace):
    """Refs that may be offered as new depends-on entries for ref."""
    graph = DependencyGraph.from_workspace(workspace)
    existing = set()
    doc = workspace.get(ref)
    if doc is not None and doc.metadata is not None:
        existing = set(doc.metadata.depends_on)
    return [c for c in workspace.refs()
            if c != ref and c not in existing and not graph.would_create_cycle(ref, c)]


def downstream_phases(phase):
    """Fixed cascade order below a phase."""
    order = list(SUFFIX_PHASE.values())
    if phase not in order:
        return []
    return order[order.index(phase) + 1:]
