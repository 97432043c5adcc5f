from specgraph.document import (
    Metadata,
    check_metadata,
    load_document,
    parse_document,
    parse_frontmatter,
    ref_from_path,
    serialize_frontmatter,
    split_ref,
    update_metadata,
)


def test_frontmatter_scalars_and_lists():
    text = (
        "---\n"
        "artifact: 'auth'\n"
        "phase: design\n"
        "depends-on:\n"
        "  - auth.req\n"
        "  - \"session.req\"\n"
        "references: [a.req, b.design]\n"
        "last-updated: 2025-03-01\n"
        "---\n"
        "\n"
        "# Auth\n"
    )
    fm, body = parse_frontmatter(text)
    assert fm["artifact"] == "auth"
    assert fm["depends-on"] == ["auth.req", "session.req"]
    assert fm["references"] == ["a.req", "b.design"]
    assert fm["last-updated"] == "2025-03-01"
    assert body == "\n# Auth\n"


def test_missing_or_unterminated_frontmatter():
    assert parse_frontmatter("# Title\n") == (None, "# Title\n")
    assert parse_frontmatter("---\nartifact: x\n")[0] is None


def test_identity_comes_from_the_filename():
    assert ref_from_path("specs/requirements/foo.req.md") == "foo.req"
    assert ref_from_path("specs/ConOps.md") == "ConOps"
    assert split_ref("foo.design") == ("foo", "design")
    assert split_ref("ConOps") == ("ConOps", None)


def test_parse_document(project, make_doc):
    path = project.write("auth.req", make_doc(
        "auth.req",
        "## Overview\n\nUses @session.req.\n\n## Questions\n\n[AI-CLARIFY: token lifetime?]",
        depends_on=["session.req"],
    ))
    doc = load_document(str(path))
    assert doc.ref == "auth.req"
    assert doc.phase == "requirement"
    assert doc.metadata.depends_on == ["session.req"]
    assert [s.heading for s in doc.sections] == ["Overview", "Questions"]
    assert doc.mentions == ["session.req"]
    assert doc.clarifications == ["token lifetime?"]


def test_malformed_metadata_still_parses_sections():
    doc = parse_document("# Loose\n\n## One\n\ntext\n", ref="loose.req")
    assert doc.metadata is None
    assert [s.heading for s in doc.sections] == ["One"]
    assert check_metadata(doc) == ["missing or malformed metadata header"]


def test_serialize_frontmatter_fixed_order():
    meta = Metadata(artifact="x", phase="design", depends_on=["x.req"], references=[],
                    version="1.0.0", last_updated="2025-01-01")
    assert serialize_frontmatter(meta) == (
        "---\n"
        "artifact: x\n"
        "phase: design\n"
        "depends-on:\n"
        "  - x.req\n"
        "references: []\n"
        "version: 1.0.0\n"
        "last-updated: 2025-01-01\n"
        "---\n"
    )


def test_check_metadata_against_filename(project, make_doc):
    path = project.write("foo.req", make_doc("foo.req", "## A\n\ntext", artifact="bar", phase="design"))
    problems = check_metadata(load_document(str(path)))
    assert "artifact 'bar' does not match filename ('foo')" in problems
    assert "phase 'design' does not match filename suffix ('requirement')" in problems


def test_update_metadata_syncs_references_and_date(project, make_doc):
    path = project.write("foo.req", make_doc(
        "foo.req", "## A\n\nSee @b.req, @a.design.md and @foo.req and @plain.", references=["stale.req"]))
    doc = load_document(str(path))
    updated = parse_document(update_metadata(doc, "2025-06-30"), path=str(path))
    assert updated.metadata.references == ["a.design", "b.req"]
    assert updated.metadata.last_updated == "2025-06-30"
    assert updated.metadata.phase == "requirement"
    assert updated.body == doc.body


def test_frontmatter_closes_only_on_a_three_dash_line():
    text = "---\nartifact: a\nphase: requirement\n----\n# A\n"
    assert parse_frontmatter(text) == (None, text)
    fm, body = parse_frontmatter("---\nartifact: a\n---  \n# A\n")
    assert fm == {"artifact": "a"}
    assert body == "# A\n"
    assert parse_frontmatter("---\n---\n# A\n") == ({}, "# A\n")
