"""Spec document model: frontmatter metadata, sections, clarification markers."""

import os
import re
from dataclasses import dataclass, field

from specgraph.errors import UnreadableDocumentError
from specgraph.refs import canonical_ref, extract_mentions
from specgraph.sections import FRONTMATTER_RE, parse_sections

PHASES = ("requirement", "design", "implementation")
PHASE_SUFFIX = {"requirement": "req", "design": "design", "implementation": "impl"}
SUFFIX_PHASE = {v: k for k, v in PHASE_SUFFIX.items()}
PHASE_DIRS = {"requirement": "requirements", "design": "design", "implementation": "implementation"}

CONOPS = "ConOps"

RE_SPEC_FILENAME = re.compile(r'^([A-Za-z0-9-]+)\.(req|design|impl)\.md$')
RE_CLARIFY = re.compile(r'\[AI-CLARIFY:\s*([^\]]+)\]')


@dataclass
class Metadata:
    artifact: str
    phase: str
    depends_on: list = field(default_factory=list)
    references: list = field(default_factory=list)
    version: str = None
    last_updated: str = None


@dataclass
class Document:
    ref: str
    content: str
    metadata: Metadata = None
    body: str = ""
    path: str = None
    sections: list = field(default_factory=list)
    clarifications: list = field(default_factory=list)
    mentions: list = field(default_factory=list)

    @property
    def phase(self):
        return self.metadata.phase if self.metadata else None

    @property
    def artifact(self):
        return self.metadata.artifact if self.metadata else None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def ref_from_path(path):
    """Filename-derived identity: specs/requirements/foo.req.md -> foo.req."""
    name = os.path.basename(path)
    if name == f"{CONOPS}.md":
        return CONOPS
    m = RE_SPEC_FILENAME.match(name)
    if m:
        return f"{m.group(1)}.{m.group(2)}"
    return name[:-3] if name.endswith(".md") else name


def split_ref(ref):
    """Return (artifact, phase) for a canonical ref, phase None when absent."""
    artifact, _, suffix = ref.partition(".")
    return artifact, SUFFIX_PHASE.get(suffix)


def make_ref(artifact, phase):
    return f"{artifact}.{PHASE_SUFFIX[phase]}"


# ---------------------------------------------------------------------------
# Frontmatter parser (no external deps)
# ---------------------------------------------------------------------------

def parse_frontmatter(text):
    """Parse the ``---`` metadata block. Returns (dict or None, body_text)."""
    text = text.replace("\r\n", "\n")
    m = FRONTMATTER_RE.match(text)
    if not m:
        return None, text
    return _parse_yaml_block(m.group(1) or ""), text[m.end():]


def _parse_yaml_block(block):
    """Minimal YAML parser sufficient for spec frontmatter."""
    result = {}
    lines = block.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i]
        if not line.strip() or line.strip().startswith("#"):
            i += 1
            continue

        m = re.match(r'^(\w[\w-]*)\s*:\s*(.*)', line)
        if not m:
            i += 1
            continue

        key = m.group(1)
        value = m.group(2).strip()

        # Block list starting on next lines
        if value == "" and i + 1 < len(lines) and lines[i + 1].strip().startswith("-"):
            items = []
            i += 1
            while i < len(lines) and lines[i].strip().startswith("-"):
                items.append(_unquote(re.sub(r'^-\s*', '', lines[i].strip())))
                i += 1
            result[key] = items
        elif value.startswith("[") and value.endswith("]"):
            inner = value[1:-1].strip()
            result[key] = [_unquote(v.strip()) for v in inner.split(",") if v.strip()] if inner else []
            i += 1
        else:
            result[key] = _unquote(value) if value else None
            i += 1

    return result


def _unquote(val):
    if len(val) >= 2 and val[0] == val[-1] and val[0] in "\"'":
        return val[1:-1]
    return val


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    seen = []
    for v in value:
        if v and v not in seen:
            seen.append(v)
    return seen


def metadata_from_dict(fm):
    """Build Metadata from a raw frontmatter dict. Returns None without artifact/phase."""
    if not fm:
        return None
    artifact = fm.get("artifact")
    phase = fm.get("phase")
    if not artifact or not phase:
        return None
    return Metadata(
        artifact=artifact,
        phase=phase,
        depends_on=_as_list(fm.get("depends-on", fm.get("dependsOn"))),
        references=_as_list(fm.get("references")),
        version=fm.get("version"),
        last_updated=fm.get("last-updated", fm.get("lastUpdated")),
    )


# ---------------------------------------------------------------------------
# Serializer
# ---------------------------------------------------------------------------

def _list_lines(key, values):
    if not values:
        return [f"{key}: []"]
    return [f"{key}:"] + [f"  - {v}" for v in values]


def serialize_frontmatter(meta):
    """Template-based output (not general YAML) with fixed field order."""
    lines = ["---", f"artifact: {meta.artifact}", f"phase: {meta.phase}"]
    lines.extend(_list_lines("depends-on", meta.depends_on))
    lines.extend(_list_lines("references", meta.references))
    if meta.version:
        lines.append(f"version: {meta.version}")
    if meta.last_updated:
        lines.append(f"last-updated: {meta.last_updated}")
    lines.append("---")
    return "\n".join(lines) + "\n"


def serialize_document(meta, body):
    """Frontmatter + body. The body is preserved as-is."""
    return serialize_frontmatter(meta) + (body or "")


# ---------------------------------------------------------------------------
# Document parsing
# ---------------------------------------------------------------------------

def extract_clarifications(content):
    return [m.group(1).strip() for m in RE_CLARIFY.finditer(content)]


def parse_document(content, path=None, ref=None):
    """Parse raw text into a Document.

    A malformed or missing metadata block leaves ``metadata`` as None; the
    sections are still parsed best-effort from the whole text.
    """
    fm, body = parse_frontmatter(content)
    meta = metadata_from_dict(fm)
    if ref is None:
        if path:
            ref = ref_from_path(path)
        elif meta and meta.phase in PHASE_SUFFIX:
            ref = make_ref(meta.artifact, meta.phase)
        else:
            ref = "unknown"
    return Document(
        ref=ref,
        content=content,
        metadata=meta,
        body=body if meta else content,
        path=path,
        sections=[s for s in parse_sections(body if meta else content) if s.heading],
        clarifications=extract_clarifications(content),
        mentions=extract_mentions(body if meta else content),
    )


def load_document(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except UnicodeDecodeError as e:
        raise UnreadableDocumentError(path, e.reason) from e
    return parse_document(content, path=path)



def write_atomic(path, content):
    """Write via a sibling .tmp file and rename over the target."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(content)
    os.rename(tmp_path, path)


def check_metadata(doc):
    """Structural checks for one document. Returns list of problem strings."""
    problems = []
    meta = doc.metadata
    if meta is None:
        return ["missing or malformed metadata header"]
    if meta.phase not in PHASES:
        problems.append(f"invalid phase '{meta.phase}' (must be requirement/design/implementation)")
    if doc.ref != CONOPS and doc.path:
        artifact, phase = split_ref(doc.ref)
        if meta.artifact != artifact:
            problems.append(f"artifact '{meta.artifact}' does not match filename ('{artifact}')")
        if phase and meta.phase != phase:
            problems.append(f"phase '{meta.phase}' does not match filename suffix ('{phase}')")
    if not doc.sections:
        problems.append("no ## sections found")
    return problems


def update_metadata(doc, today):
    """Refresh derived metadata on save. Returns the new file content.

    Sets last-updated, forces the phase implied by the filename, fills a
    missing artifact, and syncs ``references`` with the canonical in-body
    mentions.
    """
    artifact, phase = split_ref(doc.ref)
    meta = doc.metadata or Metadata(artifact=artifact, phase=phase or "requirement")
    if phase:
        meta.phase = phase
    if not meta.artifact or meta.artifact == "unknown":
        meta.artifact = artifact
    meta.last_updated = today
    mentions = {canonical_ref(m) for m in doc.mentions}
    meta.references = sorted(m for m in mentions if m and m != doc.ref)
    return serialize_document(meta, doc.body)
