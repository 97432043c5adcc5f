"""Section model and diff engine for spec documents.

A document is split on ``##`` headings into primary sections. Text before the
first heading (frontmatter, title line) is kept as an unnamed preamble so that
serializing the parsed sections reproduces the normalized document. ``###``
headings and labelled list items (``- FR-8: ...``) inside a primary section
are addressable as secondary sections.
"""

import re
from dataclasses import dataclass, field

PRIMARY_RE = re.compile(r'^##[ \t]+(\S.*?)[ \t]*$')
SECONDARY_RE = re.compile(r'^###[ \t]+(\S.*?)[ \t]*$')
# Closing delimiter is a line of exactly three dashes (trailing blanks allowed)
FRONTMATTER_RE = re.compile(r'\A---\n(?:(.*?)\n)?---[ \t]*(?:\n|\Z)', re.DOTALL)
HEADING_UPTO_3_RE = re.compile(r'^#{1,3}[ \t]')
BULLET_ONLY_RE = re.compile(r'^[ \t]*(?:[-*+]|\d+\.)?[ \t]*$')

PREAMBLE = "(preamble)"


@dataclass
class Section:
    heading: str
    level: int
    body: str = ""

    @property
    def name(self):
        return self.heading or PREAMBLE


@dataclass
class ChangeSet:
    changed_sections: list = field(default_factory=list)
    summary: str = "No changes"
    from_baseline: bool = True

    @property
    def has_changes(self):
        return bool(self.changed_sections)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize(text):
    """Normalize line endings, trailing spaces, blank-line runs and the final newline."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    # At most two consecutive blank lines
    text = re.sub(r'\n{4,}', "\n\n\n", text)
    if not text.strip():
        return ""
    return text.rstrip("\n") + "\n"


def strip_frontmatter(text):
    return FRONTMATTER_RE.sub("", normalize(text), count=1)


# ---------------------------------------------------------------------------
# Parse / serialize
# ---------------------------------------------------------------------------

def parse_sections(content):
    """Split content into an unnamed preamble followed by one Section per ``##`` heading.

    Headings inside fenced code blocks are ignored. Never raises: text with
    no headings at all is a single unnamed section.
    """
    sections = [Section("", 0)]
    buf = []
    in_fence = False
    for line in normalize(content).splitlines(keepends=True):
        text = line.rstrip("\n")
        if text.lstrip().startswith("```"):
            in_fence = not in_fence
        m = None if in_fence else PRIMARY_RE.match(text)
        if m:
            sections[-1].body = "".join(buf)
            sections.append(Section(m.group(1), 2))
            buf = []
        else:
            buf.append(line)
    sections[-1].body = "".join(buf)
    return sections


def serialize_sections(sections):
    parts = []
    for s in sections:
        if s.heading:
            parts.append(f"{'#' * s.level} {s.heading}\n")
        parts.append(s.body)
    return "".join(parts)


def section_map(content):
    """Map section name -> stripped body. Repeated headings get a ``#N`` suffix."""
    result = {}
    for s in parse_sections(content):
        name = s.name
        n = 2
        while name in result:
            name = f"{s.name} #{n}"
            n += 1
        result[name] = s.body.strip()
    return result


def find_section(sections, heading):
    """Exact, case-sensitive heading lookup. Returns the first match or None."""
    for s in sections:
        if s.heading and s.heading == heading:
            return s
    return None


# ---------------------------------------------------------------------------
# Secondary sections
# ---------------------------------------------------------------------------

def _label_matches(text, label):
    if not text.startswith(label):
        return False
    rest = text[len(label):]
    return not rest or not (rest[0].isalnum() or rest[0] in "-_")


def _item_re(label):
    return re.compile(
        r'^[ \t]*(?:[-*+][ \t]+|\d+\.[ \t]+)?(?:\*\*)?' + re.escape(label) + r'(?:\*\*)?[ \t]*:'
    )


def locate_secondary(body, label):
    """Find a secondary block inside a primary section body.

    Returns (start, end, kind) character offsets into body, or None. kind is
    "heading" for a ``###`` subsection (span excludes the heading line) and
    "item" for a labelled list item or line (span covers the whole item).
    """
    lines = body.splitlines(keepends=True)
    offsets = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line)
    offsets.append(pos)

    # 1. ### heading
    for i, line in enumerate(lines):
        m = SECONDARY_RE.match(line.rstrip("\n"))
        if m and _label_matches(m.group(1), label):
            end = i + 1
            while end < len(lines) and not HEADING_UPTO_3_RE.match(lines[end]):
                end += 1
            return offsets[i + 1], offsets[end], "heading"

    # 2. Labelled item, plus indented continuation lines
    item_re = _item_re(label)
    for i, line in enumerate(lines):
        if item_re.match(line):
            end = i + 1
            while end < len(lines) and lines[end].strip() and lines[end][0] in " \t":
                end += 1
            return offsets[i], offsets[end], "item"
    return None


def is_empty_item(text, label):
    """True when an item has nothing left but its bullet and label."""
    rest = _item_re(label).sub("", text, count=1)
    return not rest.strip() or bool(BULLET_ONLY_RE.match(rest.strip()))


# ---------------------------------------------------------------------------
# Section accessors on raw content
# ---------------------------------------------------------------------------

def get_section_body(content, primary, secondary=None):
    """Return the body of a section ("" when it does not exist)."""
    s = find_section(parse_sections(content), primary)
    if s is None:
        return ""
    if secondary is None:
        return s.body
    span = locate_secondary(s.body, secondary)
    if span is None:
        return ""
    start, end, _ = span
    return s.body[start:end]


def set_section_body(content, primary, secondary, new_body):
    """Replace a section body, creating the primary/secondary section when missing."""
    sections = parse_sections(content)
    s = find_section(sections, primary)
    text = new_body.strip("\n")
    if s is None:
        if secondary is not None:
            new_body = f"### {secondary}\n\n{text}\n"
        return append_section(content, primary, new_body)
    if secondary is None:
        s.body = new_body
        return serialize_sections(sections)
    span = locate_secondary(s.body, secondary)
    if span is None:
        base = s.body.rstrip("\n")
        s.body = f"{base}\n\n### {secondary}\n\n{text}\n\n"
    else:
        start, end, _ = span
        s.body = s.body[:start] + new_body + s.body[end:]
    return serialize_sections(sections)


def append_section(content, heading, body):
    """Append a new ``##`` section at the end of the document."""
    sections = parse_sections(content)
    last = sections[-1]
    if last.body.strip() and not last.body.endswith("\n\n"):
        last.body += "\n"
    text = body.strip("\n")
    sections.append(Section(heading, 2, f"\n{text}\n" if text else "\n"))
    return serialize_sections(sections)


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

def compare(old_content, new_content):
    """Compare two versions of a document section by section.

    Frontmatter is not a section and is ignored. Added, removed and modified
    sections are all reported, in new-content order followed by sections that
    only exist in the old content.
    """
    old_map = section_map(strip_frontmatter(old_content))
    new_map = section_map(strip_frontmatter(new_content))

    changed = []
    for name, body in new_map.items():
        if old_map.get(name) != body:
            changed.append(name)
    for name in old_map:
        if name not in new_map:
            changed.append(name)

    return ChangeSet(
        changed_sections=changed,
        summary=summarize(old_content, new_content, changed),
        from_baseline=True,
    )


def full_change(content):
    """ChangeSet used when no baseline exists: every non-empty section counts as changed."""
    changed = [name for name, body in section_map(strip_frontmatter(content)).items()
               if body or name != PREAMBLE]
    return ChangeSet(
        changed_sections=changed,
        summary=f"No baseline available; treating all {len(changed)} section(s) as changed",
        from_baseline=False,
    )


def summarize(old_content, new_content, changed):
    """Short human-readable description: sections modified and line-count delta."""
    if not changed:
        return "No changes"
    old_lines = normalize(old_content).count("\n")
    new_lines = normalize(new_content).count("\n")
    delta = new_lines - old_lines
    summary = f"Modified {len(changed)} section(s)"
    if delta > 0:
        summary += f", added {delta} line(s)"
    elif delta < 0:
        summary += f", removed {-delta} line(s)"
    return summary
