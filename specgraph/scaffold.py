"""Project and artifact scaffolding.

``scaffold_project`` lays out the specs/ tree plus one starter template per
phase. New artifacts are generated through the model by
``Cascader.scaffold``; this module only supplies the pieces that need no
model.
"""

import logging
import os
import re

from specgraph.document import PHASE_DIRS, PHASES, write_atomic

log = logging.getLogger("spec-graph.scaffold")

RE_ARTIFACT_NAME = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')

TEMPLATES_DIR = "templates"

STARTER_TEMPLATE = """---
artifact: <artifact-name>
phase: {phase}
depends-on: []
references: []
version: 1.0.0
last-updated: YYYY-MM-DD
---

# [Artifact Name] - {title}

## Overview
[Description]

## [Phase-Specific Sections]
[Content]

## Questions & Clarifications
[AI-CLARIFY: Questions?]

## Cross-References
[References to other documents]
"""


def valid_artifact_name(name):
    return bool(RE_ARTIFACT_NAME.match(name or ""))


def scaffold_project(root):
    """Create the specs/ phase directories and starter templates.

    Existing files are left alone. Returns the paths created.
    """
    created = []
    for phase in PHASES:
        path = os.path.join(root, "specs", PHASE_DIRS[phase])
        if not os.path.isdir(path):
            os.makedirs(path)
            created.append(path)

    for phase in PHASES:
        path = os.path.join(root, TEMPLATES_DIR, f"{phase}.template.md")
        if os.path.exists(path):
            continue
        write_atomic(path, STARTER_TEMPLATE.format(phase=phase, title=phase.capitalize()))
        created.append(path)

    log.info("Scaffolded project at %s (%d new path(s))", root, len(created))
    return created


def artifact_context(root, artifact, description):
    """Description text for the generation prompts.

    A description mentioning the README pulls in <root>/README.md as project
    context when the file exists.
    """
    if "readme" not in description.lower():
        return description
    readme = os.path.join(root, "README.md")
    if not os.path.isfile(readme):
        log.warning("Description mentions the README but %s does not exist", readme)
        return description
    with open(readme, "r", encoding="utf-8", errors="replace") as f:
        return f"Project context from README:\n\n{f.read()}\n\nArtifact: {artifact}"
