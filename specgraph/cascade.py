"""Cascade orchestrator: propagate a document change to its downstream phases.

Requirement changes regenerate Design then Implementation, Design changes
regenerate Implementation. Each regeneration is one model call, made in
order so that the Implementation prompt sees the Design text written a step
earlier. Model output is untrusted: it is re-parsed and structurally checked
before anything touches disk.

Tersify is the surgical variant: the model answers with a change table of
Remove from / Add to actions that are applied section by section.

Scaffolding generates the requirement and design documents of a new artifact
from a description.
"""

import enum
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import date

from specgraph.actions import (
    actions_for,
    apply_actions,
    describe,
    document_name,
    group_by_document,
    parse_change_table,
)
from specgraph.baseline import BaselineStore
from specgraph.config import Settings
from specgraph.document import (
    PHASES,
    Document,
    Metadata,
    load_document,
    make_ref,
    parse_document,
    write_atomic,
)
from specgraph.errors import ModelError, ResultValidationError, SpecGraphError
from specgraph.git import has_uncommitted_changes, stage_all
from specgraph.graph import downstream_phases
from specgraph.model import PromptLog, strip_code_fence
from specgraph.prompts import PromptSet
from specgraph.refs import canonical_ref
from specgraph.scaffold import artifact_context, valid_artifact_name
from specgraph.sections import compare, full_change, normalize

log = logging.getLogger("spec-graph.cascade")

GATE_STAGE = "stage"
GATE_CONTINUE = "continue"
GATE_CANCEL = "cancel"

PHASE_PROMPTS = {
    "design": ("generate_design", "generate-design"),
    "implementation": ("sync_implementation", "sync-implementation"),
}

SCAFFOLD_PROMPTS = {
    "requirement": ("scaffold_requirement", "scaffold-requirement"),
    "design": ("scaffold_design", "scaffold-design"),
}


class CascadeState(enum.Enum):
    IDLE = "idle"
    CHANGE_DETECTED = "change-detected"
    DEPENDENTS_RESOLVED = "dependents-resolved"
    PROMPT_BUILT = "prompt-built"
    MODEL_INVOKED = "model-invoked"
    RESULT_APPLIED = "result-applied"
    BASELINE_UPDATED = "baseline-updated"
    DONE = "done"
    ERROR = "error"


# Cancellation is honoured on entry to these states; once a model call is
# dispatched that document's update runs to completion or failure.
CANCELLABLE = {
    CascadeState.CHANGE_DETECTED,
    CascadeState.DEPENDENTS_RESOLVED,
    CascadeState.PROMPT_BUILT,
}


@dataclass
class CascadeResult:
    success: bool = False
    updated_files: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    notes: list = field(default_factory=list)
    cancelled: bool = False
    state: CascadeState = CascadeState.IDLE
    trace: list = field(default_factory=list)
    change_set: object = None

    def to_dict(self):
        return {
            "success": self.success,
            "updated_files": self.updated_files,
            "errors": self.errors,
            "notes": self.notes,
            "cancelled": self.cancelled,
            "state": self.state.value,
            "changed_sections": self.change_set.changed_sections if self.change_set else [],
            "summary": self.change_set.summary if self.change_set else "",
        }


def artifact_title(artifact):
    return " ".join(w[:1].upper() + w[1:] for w in artifact.split("-") if w)


def check_result(original, content):
    """Parse model output as a replacement for ``original``. Raises ResultValidationError."""
    parsed = parse_document(content, path=original.path, ref=original.ref)
    if parsed.metadata is None:
        raise ResultValidationError("result has no metadata header")
    if parsed.artifact != original.artifact:
        raise ResultValidationError(f"result changed artifact from '{original.artifact}' to '{parsed.artifact}'")
    if parsed.phase != original.phase:
        raise ResultValidationError(f"result changed phase from '{original.phase}' to '{parsed.phase}'")
    if not parsed.sections:
        raise ResultValidationError("result has no ## sections")
    return parsed


class Cascader:
    """Runs cascade, tersify and scaffold operations against one workspace.

    ``gate`` is called with no arguments when uncommitted changes are found
    and returns "stage", "continue" or "cancel". ``cancel`` is an optional
    threading.Event checked at each state transition before a model call.
    Only one operation per document may be in flight on a Cascader.
    """

    def __init__(self, workspace, model, baselines=None, settings=None, gate=None, cancel=None,
                 prompts=None, prompt_log=None, today=None):
        self.workspace = workspace
        self.model = model
        self.baselines = baselines or BaselineStore(workspace.root)
        self.settings = settings or Settings()
        self.gate = gate
        self.cancel = cancel
        self.prompts = prompts or PromptSet()
        self.prompt_log = prompt_log or PromptLog(workspace.root, enabled=self.settings.log_prompts)
        self.today = today or date.today().isoformat()
        self._in_flight = set()
        self._lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Bookkeeping
    # -----------------------------------------------------------------------

    def _acquire(self, ref):
        with self._lock:
            if ref in self._in_flight:
                return False
            self._in_flight.add(ref)
            return True

    def _release(self, ref):
        with self._lock:
            self._in_flight.discard(ref)

    def _advance(self, result, state):
        """Enter ``state``. Returns False when the caller cancelled."""
        result.state = state
        result.trace.append(state)
        log.debug("-> %s", state.value)
        if state in CANCELLABLE and self.cancel is not None and self.cancel.is_set():
            result.cancelled = True
            result.notes.append(f"Cancelled before {state.value}")
            log.info("Cancelled before %s", state.value)
            return False
        return True

    def _finish(self, result):
        if result.errors:
            self._advance(result, CascadeState.ERROR)
            result.success = False
        else:
            self._advance(result, CascadeState.DONE)
            result.success = True
        return result

    def _resolve(self, path_or_ref):
        doc = self.workspace.find(path_or_ref)
        if doc is None and os.path.isfile(path_or_ref):
            doc = load_document(path_or_ref)
            self.workspace.add(doc)
        return doc

    def _preflight(self, result):
        """Git gate. Returns False when the operation should stop."""
        if not self.settings.git_check or not has_uncommitted_changes(self.workspace.root):
            return True
        choice = self.gate() if self.gate is not None else GATE_CONTINUE
        if choice == GATE_CANCEL:
            result.cancelled = True
            result.notes.append("Cancelled: the repository has uncommitted changes")
            return False
        if choice == GATE_STAGE:
            try:
                stage_all(self.workspace.root)
            except SpecGraphError as e:
                result.errors.append(str(e))
                return False
            result.notes.append("Staged uncommitted changes")
        else:
            log.warning("Proceeding with uncommitted changes")
        return True

    def _call_model(self, operation, messages):
        system = messages[0].content if messages else ""
        user = messages[-1].content if messages else ""
        log_id = self.prompt_log.request(operation, system, user)
        log.info("Calling model for %s", operation)
        text = self.model.chat(messages, max_tokens=self.settings.max_tokens)
        self.prompt_log.response(log_id, operation, text)
        return text

    # -----------------------------------------------------------------------
    # Cascade
    # -----------------------------------------------------------------------

    def cascade(self, path_or_ref):
        """Propagate the changes in one document to its downstream documents."""
        result = CascadeResult()
        doc = self._resolve(path_or_ref)
        if doc is None:
            result.errors.append(f"{path_or_ref}: document not found")
            return self._finish(result)
        if not self._acquire(doc.ref):
            result.errors.append(f"{doc.ref}: another operation is already in progress on this document")
            return result
        try:
            return self._cascade(doc, result)
        finally:
            self._release(doc.ref)

    def _cascade(self, doc, result):
        if not self._advance(result, CascadeState.CHANGE_DETECTED):
            return self._finish(result)
        baseline = self.baselines.load(doc.ref)
        if baseline is None:
            changes = full_change(doc.content)
        else:
            changes = compare(baseline, doc.content)
        result.change_set = changes
        log.info("%s: %s", doc.ref, changes.summary)

        if not changes.has_changes:
            result.notes.append(f"{doc.ref}: no changes since the last cascade")
            return self._finish(result)

        if doc.metadata is None:
            result.errors.append(f"{doc.ref}: cannot cascade without a metadata header")
            return self._finish(result)

        if not self._advance(result, CascadeState.DEPENDENTS_RESOLVED):
            return self._finish(result)

        if doc.phase not in PHASES:
            result.errors.append(
                f"{doc.ref}: can only cascade from requirement or design documents (phase is '{doc.phase}')")
            return self._finish(result)
        targets = downstream_phases(doc.phase)
        if not targets:
            result.notes.append(f"{doc.ref}: implementation is the terminal phase; nothing to cascade")
            return self._finish(result)

        artifact = doc.artifact
        if doc.phase == "requirement":
            requirement = doc
        else:
            requirement = self.workspace.phase_document(artifact, "requirement")
            if requirement is None:
                result.errors.append(
                    f"{doc.ref}: cannot cascade from design without {make_ref(artifact, 'requirement')}")
                return self._finish(result)

        if not self._preflight(result):
            return self._finish(result)

        upstream = doc
        written = []
        for phase in targets:
            dependent = self.workspace.phase_document(artifact, phase)
            if dependent is None:
                result.notes.append(f"{make_ref(artifact, phase)}: not found, skipped")
                break

            if not self._advance(result, CascadeState.PROMPT_BUILT):
                return self._finish(result)
            template, operation = PHASE_PROMPTS[phase]
            messages = self.prompts.messages(
                template,
                artifact_name=artifact,
                artifact_title=artifact_title(artifact),
                last_updated=self.today,
                change_summary=changes.summary,
                modified_sections=", ".join(changes.changed_sections),
                upstream_ref=upstream.ref,
                upstream_content=upstream.content,
                requirement_ref=requirement.ref,
                requirement_content=requirement.content,
                dependent_ref=dependent.ref,
                dependent_content=dependent.content,
            )

            self._advance(result, CascadeState.MODEL_INVOKED)
            try:
                text = self._call_model(operation, messages)
                content = normalize(strip_code_fence(text))
                updated = check_result(dependent, content)
            except (ModelError, ResultValidationError) as e:
                log.error("%s: %s", dependent.ref, e)
                result.errors.append(f"{dependent.ref}: {e}")
                if phase != targets[-1]:
                    result.notes.append(f"{dependent.ref}: update failed, later phases not updated")
                break

            self._advance(result, CascadeState.RESULT_APPLIED)
            write_atomic(dependent.path, content)
            self.workspace.add(updated)
            result.updated_files.append(dependent.path)
            written.append(updated)
            log.info("Updated %s", dependent.ref)
            upstream = updated

        if written and not result.errors:
            self._advance(result, CascadeState.BASELINE_UPDATED)
            self.baselines.save(doc.ref, doc.content)
            for updated in written:
                self.baselines.save(updated.ref, updated.content)
        return self._finish(result)

    # -----------------------------------------------------------------------
    # Tersify
    # -----------------------------------------------------------------------

    def tersify(self, path_or_ref):
        """Remove content duplicated from referenced documents via a change table."""
        result = CascadeResult()
        doc = self._resolve(path_or_ref)
        if doc is None:
            result.errors.append(f"{path_or_ref}: document not found")
            return self._finish(result)
        if not self._acquire(doc.ref):
            result.errors.append(f"{doc.ref}: another operation is already in progress on this document")
            return result
        try:
            return self._tersify(doc, result)
        finally:
            self._release(doc.ref)

    def _related(self, doc, result):
        referenced = []
        for ref in doc.metadata.references:
            target = self.workspace.get(canonical_ref(ref) or ref)
            if target is None:
                result.notes.append(f"{ref}: referenced document not found")
            elif target not in referenced:
                referenced.append(target)

        seen = {d.ref for d in referenced}
        dependents = []
        for ref in self.workspace.refs():
            other = self.workspace.get(ref)
            if other.metadata is None or ref == doc.ref:
                continue
            if doc.ref in other.metadata.depends_on or doc.artifact in other.metadata.depends_on:
                if ref in seen:
                    log.warning("%s is both referenced by and dependent on %s", ref, doc.ref)
                    continue
                dependents.append(other)
        return referenced, dependents

    def _tersify(self, doc, result):
        if doc.metadata is None or not doc.metadata.references:
            result.notes.append(f"{doc.ref}: no references; nothing to tersify")
            return self._finish(result)

        if not self._advance(result, CascadeState.DEPENDENTS_RESOLVED):
            return self._finish(result)
        referenced, dependents = self._related(doc, result)
        if not referenced:
            result.notes.append(f"{doc.ref}: no referenced documents found; nothing to tersify")
            return self._finish(result)

        if not self._preflight(result):
            return self._finish(result)

        if not self._advance(result, CascadeState.PROMPT_BUILT):
            return self._finish(result)
        messages = self.prompts.messages(
            "tersify",
            source_filename=os.path.basename(doc.path) if doc.path else f"{doc.ref}.md",
            content=doc.content,
            referenced_documents=_bundle(referenced),
            dependent_documents=_bundle(dependents) or "(none)",
        )

        self._advance(result, CascadeState.MODEL_INVOKED)
        try:
            text = self._call_model("tersify", messages)
        except ModelError as e:
            log.error("%s: %s", doc.ref, e)
            result.errors.append(f"{doc.ref}: {e}")
            return self._finish(result)

        rows = parse_change_table(text)
        if not rows:
            result.errors.append(f"{doc.ref}: response contained no change table")
            return self._finish(result)

        self._advance(result, CascadeState.RESULT_APPLIED)
        allowed = {d.ref: d for d in [doc] + referenced + dependents}
        for name, doc_rows in group_by_document(rows).items():
            target = allowed.get(canonical_ref(document_name(name)) or name)
            if target is None:
                result.notes.append(f"{name}: not part of this tersify, skipped")
                continue
            self._apply(target, doc_rows, result)
        return self._finish(result)

    def _apply(self, target, rows, result):
        report = apply_actions(target.content, actions_for(rows))
        for action in report.unknown:
            result.notes.append(f"{target.ref}: skipped {describe(action)}")
        for action in report.not_applied:
            result.notes.append(f"{target.ref}: not applied: {describe(action)}")
        if report.content == target.content:
            return
        try:
            updated = check_result(target, report.content)
        except ResultValidationError as e:
            result.errors.append(f"{target.ref}: {e}")
            return
        write_atomic(target.path, report.content)
        self.workspace.add(updated)
        result.updated_files.append(target.path)
        log.info("Updated %s (%d action(s) applied)", target.ref, len(report.applied))


    # -----------------------------------------------------------------------
    # Scaffold
    # -----------------------------------------------------------------------

    def scaffold(self, artifact, description):
        """Generate the requirement and design documents of a new artifact.

        Both documents are generated and checked before either is written, so
        a failure leaves the workspace untouched.
        """
        result = CascadeResult()
        if not valid_artifact_name(artifact):
            result.errors.append(f"'{artifact}' is not a valid artifact name (use kebab-case)")
            return self._finish(result)
        if not description.strip():
            result.errors.append(f"{artifact}: a description is required")
            return self._finish(result)
        for phase in SCAFFOLD_PROMPTS:
            ref = make_ref(artifact, phase)
            if os.path.exists(self.workspace.resolve_path(ref)):
                result.errors.append(f"{ref}: already exists")
        if result.errors:
            return self._finish(result)

        ref = make_ref(artifact, "requirement")
        if not self._acquire(ref):
            result.errors.append(f"{ref}: another operation is already in progress on this document")
            return result
        try:
            return self._scaffold(artifact, description, result)
        finally:
            self._release(ref)

    def _scaffold(self, artifact, description, result):
        values = {
            "artifact_name": artifact,
            "artifact_title": artifact_title(artifact),
            "last_updated": self.today,
            "description": artifact_context(self.workspace.root, artifact, description),
            "requirement_ref": make_ref(artifact, "requirement"),
        }
        generated = []
        for phase, (template, operation) in SCAFFOLD_PROMPTS.items():
            if not self._advance(result, CascadeState.PROMPT_BUILT):
                return self._finish(result)
            ref = make_ref(artifact, phase)
            expected = Document(ref=ref, content="", metadata=Metadata(artifact, phase),
                                path=self.workspace.resolve_path(ref))
            messages = self.prompts.messages(template, **values)

            self._advance(result, CascadeState.MODEL_INVOKED)
            try:
                content = normalize(strip_code_fence(self._call_model(operation, messages)))
                generated.append(check_result(expected, content))
            except (ModelError, ResultValidationError) as e:
                log.error("%s: %s", ref, e)
                result.errors.append(f"{ref}: {e}")
                result.notes.append(f"{artifact}: nothing written")
                return self._finish(result)
            values["requirement_content"] = content

        self._advance(result, CascadeState.RESULT_APPLIED)
        for doc in generated:
            write_atomic(doc.path, doc.content)
            self.workspace.add(doc)
            result.updated_files.append(doc.path)
            log.info("Created %s", doc.ref)

        self._advance(result, CascadeState.BASELINE_UPDATED)
        for doc in generated:
            self.baselines.save(doc.ref, doc.content)
        return self._finish(result)


def _bundle(docs):
    return "\n\n---\n\n".join(f"## {d.ref}.md\n\n{d.content}" for d in docs)
