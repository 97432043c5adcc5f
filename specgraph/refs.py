"""Artifact references: in-text @mentions and their canonical form.

A canonical reference is ``<artifact>.<req|design|impl>`` (or ``ConOps``).
Anything written with an extra qualifier (``foo.req.md``, ``foo.req[extra]``)
is over-specified: still resolvable, but should be rewritten to the bare form.
"""

import re

# @token: artifact id plus optional dotted/bracketed qualifiers
RE_MENTION = re.compile(r'(?<![\w@])@([A-Za-z0-9][A-Za-z0-9-]*(?:(?:\.[A-Za-z0-9_-]+)|(?:\[[^\]\s]*\]))*)')
RE_CANONICAL = re.compile(r'^[A-Za-z0-9-]+\.(?:req|design|impl)$')
RE_CANONICAL_PREFIX = re.compile(r'^([A-Za-z0-9-]+\.(?:req|design|impl))(?![A-Za-z0-9-])')
RE_FILE_REF = re.compile(r'(?<![\w/.-])@?([A-Za-z0-9-]+)\.(req|design|impl)\.md\b')

TRAILING_PUNCTUATION = ".,;:!?)"


def extract_mentions(content):
    """Ordered, de-duplicated @mentions with trailing punctuation excluded."""
    mentions = []
    for m in RE_MENTION.finditer(content):
        ref = m.group(1).rstrip(TRAILING_PUNCTUATION)
        if ref and ref not in mentions:
            mentions.append(ref)
    return mentions


def is_canonical(ref):
    return ref == "ConOps" or bool(RE_CANONICAL.match(ref))


def is_over_specified(ref):
    """True for a reference carrying a qualifier beyond artifact.phase."""
    return not is_canonical(ref) and bool(RE_CANONICAL_PREFIX.match(ref))


def canonical_ref(ref):
    """Bare artifact.phase form of a reference, or None when it has no phase."""
    if ref == "ConOps":
        return ref
    m = RE_CANONICAL_PREFIX.match(ref)
    return m.group(1) if m else None


def normalize_references(content):
    """Rewrite file-style references (``foo.req.md``, ``@foo.req.md``) to ``@foo.req``."""
    return RE_FILE_REF.sub(r'@\1.\2', content)
