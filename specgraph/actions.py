"""Structured edit actions: change-table parsing and surgical application.

A tersify response is a Markdown table of rows like::

    | Target Document | Action                | Details           | Reason    |
    |-----------------|-----------------------|-------------------|-----------|
    | foo.req.md      | Remove from Overview  | duplicated text   | Duplicate |
    | foo.req.md      | Add to AI-CLARIFY ... | open question     | Missing   |
    | bar.req.md      | None                  | -                 | -         |

Each Action cell is classified into exactly one of RemoveFrom, AddTo,
NoAction or UnknownAction. Unknown actions are reported and never applied.
"""

import logging
import re
from dataclasses import dataclass, field

from specgraph.sections import (
    BULLET_ONLY_RE,
    find_section,
    get_section_body,
    is_empty_item,
    locate_secondary,
    parse_sections,
    set_section_body,
)

log = logging.getLogger("spec-graph.actions")

REMOVE_FROM = "Remove from"
ADD_TO = "Add to"
NONE = "None"
UNKNOWN = "Unknown"

CLARIFY_TARGET = "AI-CLARIFY section"
CLARIFY_HEADING = "Questions & Clarifications"

RE_ITEM_ID = re.compile(r'^[A-Z][A-Z0-9]*-\d+$')
RE_PATH_SEPARATOR = re.compile(r'\s+[/>]\s+')
RE_TABLE_SEPARATOR = re.compile(r'^\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?$')
RE_CELL_SPLIT = re.compile(r'(?<!\\)\|')

TABLE_COLUMNS = ("Target Document", "Action", "Details", "Reason")


@dataclass(frozen=True)
class SectionPath:
    primary: str
    secondary: str = None

    def __str__(self):
        return f"{self.primary} / {self.secondary}" if self.secondary else self.primary


@dataclass(frozen=True)
class RemoveFrom:
    path: SectionPath
    content: str


@dataclass(frozen=True)
class AddTo:
    path: SectionPath
    content: str


@dataclass(frozen=True)
class NoAction:
    pass


@dataclass(frozen=True)
class UnknownAction:
    raw: str


@dataclass
class ChangeRow:
    document: str
    action: str
    details: str = ""
    reason: str = ""


@dataclass
class ApplyReport:
    content: str
    applied: list = field(default_factory=list)
    not_applied: list = field(default_factory=list)
    unknown: list = field(default_factory=list)

    @property
    def changed(self):
        return bool(self.applied)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def action_name(raw):
    """Canonical verb of a raw action string, or "Unknown"."""
    if raw.startswith(REMOVE_FROM + " "):
        return REMOVE_FROM
    if raw.startswith(ADD_TO + " "):
        return ADD_TO
    if raw == NONE:
        return NONE
    return UNKNOWN


def action_target(raw):
    """Whatever follows the recognized verb ("" for None and unknown verbs)."""
    name = action_name(raw)
    if name in (REMOVE_FROM, ADD_TO):
        return raw[len(name) + 1:]
    return ""


def parse_section_path(target):
    """Turn an action target into a SectionPath.

    ``AI-CLARIFY section`` maps to the clarifications heading. A trailing
    item id (``Functional Requirements FR-8``) or an explicit separator
    (``Functional Requirements / FR-8``, ``Design > Data Model``) names a
    secondary section.
    """
    target = target.strip()
    if target == CLARIFY_TARGET:
        return SectionPath(CLARIFY_HEADING)

    parts = RE_PATH_SEPARATOR.split(target, maxsplit=1)
    if len(parts) == 2 and parts[0] and parts[1]:
        return SectionPath(parts[0].strip(), parts[1].strip())

    words = target.split(" ")
    if len(words) > 1 and RE_ITEM_ID.match(words[-1]):
        return SectionPath(" ".join(words[:-1]).strip(), words[-1])
    return SectionPath(target)


def parse_action(raw, details=""):
    raw = raw.strip()
    name = action_name(raw)
    if name == NONE:
        return NoAction()
    if name == UNKNOWN:
        return UnknownAction(raw)
    path = parse_section_path(action_target(raw))
    if name == REMOVE_FROM:
        return RemoveFrom(path, details)
    return AddTo(path, details)


def describe(action):
    if isinstance(action, (RemoveFrom, AddTo)):
        verb = REMOVE_FROM if isinstance(action, RemoveFrom) else ADD_TO
        return f"{verb} {action.path}"
    if isinstance(action, NoAction):
        return NONE
    return f"unknown action '{action.raw}'"


# ---------------------------------------------------------------------------
# Change table
# ---------------------------------------------------------------------------

def _split_row(line):
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|") and not line.endswith("\\|"):
        line = line[:-1]
    return [cell.strip().replace("\\|", "|") for cell in RE_CELL_SPLIT.split(line)]


def parse_markdown_tables(text):
    """Every pipe table in text, each as a list of {header: cell} dicts."""
    tables = []
    lines = text.replace("\r\n", "\n").split("\n")
    i = 0
    while i < len(lines) - 1:
        header = lines[i].strip()
        if header.startswith("|") and RE_TABLE_SEPARATOR.match(lines[i + 1].strip()):
            columns = _split_row(header)
            rows = []
            i += 2
            while i < len(lines) and lines[i].strip().startswith("|"):
                cells = _split_row(lines[i])
                cells += [""] * (len(columns) - len(cells))
                rows.append(dict(zip(columns, cells)))
                i += 1
            tables.append(rows)
        else:
            i += 1
    return tables


def _cell(row, column):
    value = row.get(column, "").strip()
    return "" if value == "-" else value


def parse_change_table(text):
    """Rows of every Target Document / Action / Details / Reason table in text."""
    changes = []
    for rows in parse_markdown_tables(text):
        if not rows or "Target Document" not in rows[0] or "Action" not in rows[0]:
            continue
        for row in rows:
            document = _cell(row, "Target Document")
            if not document:
                continue
            changes.append(ChangeRow(
                document=document,
                action=_cell(row, "Action"),
                details=_cell(row, "Details"),
                reason=_cell(row, "Reason"),
            ))
    return changes


def document_name(name):
    name = name.strip().strip("`")
    return name[:-3] if name.endswith(".md") else name


def group_by_document(changes):
    """{document ref: [ChangeRow, ...]} in first-seen order."""
    grouped = {}
    for change in changes:
        grouped.setdefault(document_name(change.document), []).append(change)
    return grouped


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def _cut(body, target):
    """Remove the first occurrence of target, tidying only the line(s) it sat on.

    A touched line left blank or holding only a bullet marker is dropped, and
    if that leaves two blank lines meeting at the cut one of them goes too.
    Everything else in body is returned unchanged.
    """
    start = body.index(target)
    end = start + len(target)
    line_start = body.rfind("\n", 0, start) + 1
    line_end = body.find("\n", end)
    if line_end == -1:
        line_end = len(body)
    remaining = (body[line_start:start] + body[end:line_end]).rstrip()
    if not BULLET_ONLY_RE.match(remaining):
        return body[:line_start] + remaining + body[line_end:]

    head = body[:line_start]
    tail = body[line_end + 1:]
    if (head == "\n" or head.endswith("\n\n")) and tail.startswith("\n"):
        tail = tail[1:]
    return head + tail


def _remove(content, action):
    primary, secondary = action.path.primary, action.path.secondary
    section = find_section(parse_sections(content), primary)
    if section is None:
        return None
    span = None
    if secondary is not None:
        span = locate_secondary(section.body, secondary)
        if span is None:
            return None
    body = get_section_body(content, primary, secondary)

    target = action.content
    if secondary and target not in body and target.startswith(f"{secondary}: "):
        target = target[len(secondary) + 2:]
    if not target.strip() or target not in body:
        return None

    new_body = _cut(body, target)
    if span is not None and span[2] == "item" and is_empty_item(new_body, secondary):
        new_body = ""
    return set_section_body(content, primary, secondary, new_body)


def _add(content, action):
    text = action.content.strip("\n")
    if not text.strip():
        return None
    primary, secondary = action.path.primary, action.path.secondary
    body = get_section_body(content, primary, secondary)
    head = body.rstrip("\n")
    tail = body[len(head):] or "\n"
    if not head.strip():
        new_body = "\n" + text + ("\n\n" if len(tail) > 1 else "\n")
    else:
        new_body = f"{head}\n{text}{tail}"
    return set_section_body(content, primary, secondary, new_body)


def apply_actions(content, actions):
    """Apply actions in order, each against the result of the previous ones.

    NoAction entries are accepted and do nothing. RemoveFrom text that is not
    in its section (or a section that does not exist) is reported in
    ``not_applied``. Unknown actions are reported in ``unknown`` and leave the
    document untouched.
    """
    report = ApplyReport(content=content)
    for action in actions:
        if isinstance(action, NoAction):
            continue
        if isinstance(action, UnknownAction):
            log.warning("Skipping %s", describe(action))
            report.unknown.append(action)
            continue
        if isinstance(action, RemoveFrom):
            updated = _remove(report.content, action)
        elif isinstance(action, AddTo):
            updated = _add(report.content, action)
        else:
            raise TypeError(f"not an edit action: {action!r}")

        if updated is None:
            log.info("Not applied: %s", describe(action))
            report.not_applied.append(action)
        else:
            report.content = updated
            report.applied.append(action)
    return report


def actions_for(rows):
    return [parse_action(row.action, row.details) for row in rows]
