"""spec-graph: cascade changes through Requirement -> Design -> Implementation specs.

Reads specs/requirements/*.req.md, specs/design/*.design.md,
specs/implementation/*.impl.md and specs/ConOps.md under the project root
($SPECGRAPH_PROJECT_DIR or the current directory). DOC is a path or a ref
such as foo.req.

Subcommands (read):
  validate [DOC] [--json]   Check metadata, references, mentions and cycles
  deps DOC [--json]         Show dependencies, dependents and addable candidates
  diff DOC [--json]         Sections changed since the last cascade baseline

Subcommands (write):
  baseline DOC              Record DOC's current text as its baseline
  baseline --clear DOC      Forget DOC's baseline (the next diff treats it as new)
  baseline --list           List documents that have a baseline
  cascade DOC [--json] [--stage|--force]
                            Regenerate downstream phase documents via the model
  tersify DOC [--json] [--stage|--force]
                            Remove duplicated content via model edit actions
  normalize DOC             Rewrite file-style references (foo.req.md) as @foo.req
  sync DOC                  Refresh last-updated, phase and references metadata
  scaffold                  Create the specs/ tree and starter templates
  scaffold ARTIFACT DESCRIPTION... [--json]
                            Generate a new artifact's requirement and design via the model

Options:
  --verbose, -v             Debug logging on stderr
  --stage                   Stage uncommitted changes before a model call
  --force                   Proceed despite uncommitted changes
"""

import json
import logging
import sys
from datetime import date

from specgraph.baseline import BaselineStore
from specgraph.cascade import GATE_CANCEL, GATE_CONTINUE, GATE_STAGE, Cascader
from specgraph.config import api_key, load_settings, project_root
from specgraph.document import check_metadata, parse_document, update_metadata, write_atomic
from specgraph.errors import SpecGraphError
from specgraph.graph import (
    DependencyGraph,
    Workspace,
    dependency_candidates,
    validate_references,
    validate_workspace,
)
from specgraph.model import PromptLog, XAIClient
from specgraph.refs import normalize_references
from specgraph.scaffold import scaffold_project
from specgraph.sections import compare, full_change, normalize


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _split_flags(args):
    flags = {a for a in args if a.startswith("-")}
    positional = [a for a in args if not a.startswith("-")]
    return positional, flags


def _find(ws, arg):
    doc = ws.find(arg)
    if doc is None:
        for finding in ws.unreadable:
            if finding.ref == arg:
                print(f"ERROR: {finding}", file=sys.stderr)
                return None
        print(f"ERROR: {arg} not found in {ws.specs_dir}", file=sys.stderr)
    return doc


def _print_findings(errors, warnings, count):
    for e in errors:
        print(f"ERROR: {e}", file=sys.stderr)
    for w in warnings:
        print(f"WARNING: {w}", file=sys.stderr)
    if not errors and not warnings:
        print(f"Validation passed: {count} document(s), 0 errors, 0 warnings.")
    else:
        print(f"{count} document(s), {len(errors)} error(s), {len(warnings)} warning(s).")


def make_model(root, settings):
    return XAIClient(api_key(root), settings)


def _gate_from_flags(flags):
    if "--stage" in flags:
        return lambda: GATE_STAGE
    if "--force" in flags:
        return lambda: GATE_CONTINUE

    def refuse():
        print("ERROR: uncommitted changes; rerun with --stage or --force", file=sys.stderr)
        return GATE_CANCEL
    return refuse


# ---------------------------------------------------------------------------
# Read subcommands
# ---------------------------------------------------------------------------

def cmd_validate(ws, args):
    positional, flags = _split_flags(args)
    if positional:
        doc = _find(ws, positional[0])
        if doc is None:
            return 1
        errors = [f"{doc.ref} [metadata]: {p}" for p in check_metadata(doc)]
        if doc.metadata is not None:
            found, warned = validate_references(doc, ws)
            errors += [str(f) for f in found]
            warnings = [str(w) for w in warned]
        else:
            warnings = []
        count = 1
    else:
        found, warned = validate_workspace(ws)
        errors = [str(f) for f in found]
        warnings = [str(w) for w in warned]
        count = len(ws.documents) + len(ws.unreadable)

    if "--json" in flags:
        print(json.dumps({"documents": count, "errors": errors, "warnings": warnings}, indent=2))
    else:
        _print_findings(errors, warnings, count)
    return 1 if errors else 0


def cmd_deps(ws, args):
    positional, flags = _split_flags(args)
    if not positional:
        print("Usage: spec-graph deps DOC [--json]", file=sys.stderr)
        return 1
    doc = _find(ws, positional[0])
    if doc is None:
        return 1
    graph = DependencyGraph.from_workspace(ws)
    closure = graph.all_dependencies(doc.ref)
    output = {
        "ref": doc.ref,
        "depends_on": doc.metadata.depends_on if doc.metadata else [],
        "references": doc.metadata.references if doc.metadata else [],
        "all_dependencies": sorted(closure.refs),
        "cyclic": closure.cyclic,
        "dependents": graph.dependents(doc.ref),
        "candidates": dependency_candidates(doc.ref, ws),
    }
    if "--json" in flags:
        print(json.dumps(output, indent=2))
        return 0

    print(f"{doc.ref}")
    for key in ("depends_on", "references", "all_dependencies", "dependents", "candidates"):
        values = output[key]
        print(f"  {key.replace('_', '-') + ':':<18} {', '.join(values) if values else '(none)'}")
    if closure.cyclic:
        print(f"WARNING: {doc.ref} is part of a dependency cycle", file=sys.stderr)
    return 0


def cmd_diff(ws, args):
    positional, flags = _split_flags(args)
    if not positional:
        print("Usage: spec-graph diff DOC [--json]", file=sys.stderr)
        return 1
    doc = _find(ws, positional[0])
    if doc is None:
        return 1
    baseline = BaselineStore(ws.root).load(doc.ref)
    changes = full_change(doc.content) if baseline is None else compare(baseline, doc.content)
    if "--json" in flags:
        print(json.dumps({
            "ref": doc.ref,
            "from_baseline": changes.from_baseline,
            "changed_sections": changes.changed_sections,
            "summary": changes.summary,
        }, indent=2))
        return 0
    print(f"{doc.ref}: {changes.summary}")
    for name in changes.changed_sections:
        print(f"  - {name}")
    return 0


# ---------------------------------------------------------------------------
# Write subcommands
# ---------------------------------------------------------------------------

def cmd_baseline(ws, args):
    positional, flags = _split_flags(args)
    store = BaselineStore(ws.root)
    if "--list" in flags:
        for ref in store.refs():
            print(ref)
        return 0
    if not positional:
        print("Usage: spec-graph baseline [--clear] DOC | --list", file=sys.stderr)
        return 1

    if "--clear" in flags:
        ref = positional[0]
        doc = ws.find(ref)
        if doc is not None:
            ref = doc.ref
        if store.delete(ref):
            print(f"{ref}: baseline cleared")
        else:
            print(f"{ref}: no baseline recorded")
        return 0

    doc = _find(ws, positional[0])
    if doc is None:
        return 1
    store.save(doc.ref, doc.content)
    print(f"{doc.ref}: baseline recorded")
    return 0


def _print_result(label, result, json_output):
    if json_output:
        print(json.dumps(result.to_dict(), indent=2))
        return 1 if result.errors else 0
    if result.change_set is not None:
        print(f"{label}: {result.change_set.summary}")
    for path in result.updated_files:
        print(f"  updated {path}")
    for note in result.notes:
        print(f"  note: {note}")
    for err in result.errors:
        print(f"ERROR: {err}", file=sys.stderr)
    if result.cancelled:
        print(f"{label}: cancelled")
    elif result.success:
        print(f"{label}: {len(result.updated_files)} file(s) updated.")
    return 1 if result.errors else 0


def _run_model_command(ws, args, operation):
    positional, flags = _split_flags(args)
    if not positional:
        print(f"Usage: spec-graph {operation} DOC [--json] [--stage|--force]", file=sys.stderr)
        return 1
    doc = _find(ws, positional[0])
    if doc is None:
        return 1
    settings = load_settings(ws.root)
    try:
        model = make_model(ws.root, settings)
    except SpecGraphError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    cascader = Cascader(
        ws,
        model,
        settings=settings,
        gate=_gate_from_flags(flags),
        prompt_log=PromptLog(ws.root, enabled=settings.log_prompts),
    )
    run = cascader.cascade if operation == "cascade" else cascader.tersify
    return _print_result(doc.ref, run(doc.ref), "--json" in flags)


def cmd_cascade(ws, args):
    return _run_model_command(ws, args, "cascade")


def cmd_tersify(ws, args):
    return _run_model_command(ws, args, "tersify")


def cmd_normalize(ws, args):
    positional, _ = _split_flags(args)
    if not positional:
        print("Usage: spec-graph normalize DOC", file=sys.stderr)
        return 1
    doc = _find(ws, positional[0])
    if doc is None:
        return 1
    content = normalize(normalize_references(doc.content))
    if content == doc.content:
        print(f"{doc.ref}: already normalized")
        return 0
    write_atomic(doc.path, content)
    print(f"{doc.ref}: normalized")
    return 0


def cmd_sync(ws, args):
    positional, _ = _split_flags(args)
    if not positional:
        print("Usage: spec-graph sync DOC", file=sys.stderr)
        return 1
    doc = _find(ws, positional[0])
    if doc is None:
        return 1
    content = update_metadata(doc, date.today().isoformat())
    write_atomic(doc.path, content)
    updated = parse_document(content, path=doc.path)
    refs = updated.metadata.references
    print(f"{doc.ref}: metadata synced (references: {', '.join(refs) if refs else 'none'})")
    return 0


def cmd_scaffold(ws, args):
    positional, flags = _split_flags(args)
    if not positional:
        created = scaffold_project(ws.root)
        for path in created:
            print(f"  created {path}")
        print(f"Project scaffolded at {ws.root} ({len(created)} new path(s)).")
        return 0
    if len(positional) < 2:
        print("Usage: spec-graph scaffold ARTIFACT DESCRIPTION... [--json]", file=sys.stderr)
        return 1

    artifact, description = positional[0], " ".join(positional[1:])
    settings = load_settings(ws.root)
    try:
        model = make_model(ws.root, settings)
    except SpecGraphError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    cascader = Cascader(ws, model, settings=settings,
                        prompt_log=PromptLog(ws.root, enabled=settings.log_prompts))
    return _print_result(artifact, cascader.scaffold(artifact, description), "--json" in flags)


COMMANDS = {
    "validate": cmd_validate,
    "deps": cmd_deps,
    "diff": cmd_diff,
    "baseline": cmd_baseline,
    "cascade": cmd_cascade,
    "tersify": cmd_tersify,
    "normalize": cmd_normalize,
    "sync": cmd_sync,
    "scaffold": cmd_scaffold,
}


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    verbose = "--verbose" in args or "-v" in args
    args = [a for a in args if a not in ("--verbose", "-v")]
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, stream=sys.stderr)

    if not args:
        print(__doc__)
        return 1

    cmd = args[0]
    handler = COMMANDS.get(cmd)
    if handler is None:
        print(f"Unknown command: {cmd}")
        print(__doc__)
        return 1

    root = project_root()
    try:
        ws = Workspace.load(root)
        return handler(ws, args[1:])
    except SpecGraphError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"ERROR: {e.filename or root}: {e.strerror or e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
