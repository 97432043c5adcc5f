from specgraph.actions import (
    CLARIFY_HEADING,
    AddTo,
    NoAction,
    RemoveFrom,
    SectionPath,
    UnknownAction,
    action_name,
    action_target,
    apply_actions,
    group_by_document,
    parse_action,
    parse_change_table,
    parse_section_path,
)

REQS = """# T

## Functional Requirements

- FR-8: The system shall export CSV. It must also export PDF.
- FR-9: The system shall import CSV.

## Notes

Keep this.
"""

FR = SectionPath("Functional Requirements", "FR-8")


def test_action_name_and_target():
    assert action_name("Remove from Overview") == "Remove from"
    assert action_target("Remove from Overview") == "Overview"
    assert action_name("Add to AI-CLARIFY section") == "Add to"
    assert action_target("Add to AI-CLARIFY section") == "AI-CLARIFY section"
    assert (action_name("None"), action_target("None")) == ("None", "")
    assert (action_name("Delete Overview"), action_target("Delete Overview")) == ("Unknown", "")
    assert action_name("Remove fromOverview") == "Unknown"


def test_section_path_forms():
    assert parse_section_path("Functional Requirements FR-8") == FR
    assert parse_section_path("Functional Requirements / FR-8") == FR
    assert parse_section_path("Design > Data Model") == SectionPath("Design", "Data Model")
    assert parse_section_path("AI-CLARIFY section") == SectionPath(CLARIFY_HEADING)
    assert parse_section_path("Overview") == SectionPath("Overview")


def test_parse_action_variants():
    assert parse_action("Remove from Overview", "dup") == RemoveFrom(SectionPath("Overview"), "dup")
    assert parse_action("Add to Functional Requirements FR-8", "more") == AddTo(FR, "more")
    assert parse_action("None") == NoAction()
    assert parse_action("Rewrite Overview", "x") == UnknownAction("Rewrite Overview")


def test_change_table():
    text = """
AI analysis complete.

| Target Document | Action | Details | Reason |
|-----------------|--------|---------|--------|
| geode-rose-quartz.req.md | Remove from Overview | Rose Quartz moves one space | Duplicate |
| geode-rose-quartz.req.md | Add to AI-CLARIFY section | Color distinction noted | Missing detail |
| faction.req.md | None | - | - |

End of report.
"""
    rows = parse_change_table(text)
    assert [(r.document, r.action, r.details, r.reason) for r in rows] == [
        ("geode-rose-quartz.req.md", "Remove from Overview", "Rose Quartz moves one space", "Duplicate"),
        ("geode-rose-quartz.req.md", "Add to AI-CLARIFY section", "Color distinction noted", "Missing detail"),
        ("faction.req.md", "None", "", ""),
    ]
    grouped = group_by_document(rows)
    assert list(grouped) == ["geode-rose-quartz.req", "faction.req"]
    assert len(grouped["geode-rose-quartz.req"]) == 2


def test_other_tables_are_ignored():
    assert parse_change_table("| Name | Age |\n|------|-----|\n| John | 25 |\n") == []


def test_unknown_action_never_touches_the_document():
    unknown = UnknownAction("Rewrite Notes")
    report = apply_actions(REQS, [unknown])
    assert report.content == REQS
    assert report.unknown == [unknown]
    assert report.applied == []
    assert report.not_applied == []


def test_remove_from_secondary_keeps_siblings_verbatim():
    report = apply_actions(REQS, [RemoveFrom(FR, " It must also export PDF.")])
    assert report.applied
    assert "export PDF" not in report.content
    assert "- FR-8: The system shall export CSV.\n- FR-9: The system shall import CSV.\n" in report.content
    assert report.content.endswith("## Notes\n\nKeep this.\n")


def test_removing_a_whole_labelled_item_drops_the_item():
    text = "FR-8: The system shall export CSV. It must also export PDF."
    report = apply_actions(REQS, [RemoveFrom(FR, text)])
    assert "FR-8" not in report.content
    assert "## Functional Requirements\n\n- FR-9: The system shall import CSV.\n" in report.content


def test_remove_of_absent_text_is_reported_not_applied():
    first = RemoveFrom(SectionPath("Notes"), "Keep this.")
    again = RemoveFrom(SectionPath("Notes"), "Keep this.")
    missing = RemoveFrom(SectionPath("Nowhere"), "anything")
    report = apply_actions(REQS, [first, again, missing])
    assert report.applied == [first]
    assert report.not_applied == [again, missing]
    assert "Keep this." not in report.content


def test_add_to_existing_section_appends_to_its_body():
    content = "# T\n\n## Overview\n\nfirst\n\n## Next\n\nx\n"
    report = apply_actions(content, [AddTo(SectionPath("Overview"), "second")])
    assert report.content == "# T\n\n## Overview\n\nfirst\nsecond\n\n## Next\n\nx\n"


def test_add_to_missing_clarify_section_creates_it_at_the_end():
    content = "# T\n\n## Overview\n\nfirst\n"
    action = parse_action("Add to AI-CLARIFY section", "- [AI-CLARIFY: Which format?]")
    report = apply_actions(content, [action])
    assert report.content == (
        "# T\n\n## Overview\n\nfirst\n\n## Questions & Clarifications\n\n- [AI-CLARIFY: Which format?]\n"
    )


def test_actions_fold_sequentially():
    content = "# T\n\n## Overview\n\nfirst\n\n## Next\n\nx\n"
    report = apply_actions(content, [
        AddTo(SectionPath("Overview"), "temp line"),
        RemoveFrom(SectionPath("Overview"), "temp line"),
    ])
    assert len(report.applied) == 2
    assert report.content == content


def test_heading_match_is_exact_and_case_sensitive():
    content = "# T\n\n## Overview\n\nfirst\n"
    report = apply_actions(content, [AddTo(SectionPath("overview"), "lower")])
    assert report.content.endswith("## Overview\n\nfirst\n\n## overview\n\nlower\n")


def test_remove_from_leaves_fenced_markers_and_blank_runs_alone():
    content = "# T\n\n## Notes\n\nAlpha\n\n\nBeta\n\n```\n-\n```\n\nremove me\n"
    report = apply_actions(content, [RemoveFrom(SectionPath("Notes"), "remove me")])
    assert report.applied
    assert report.content == "# T\n\n## Notes\n\nAlpha\n\n\nBeta\n\n```\n-\n```\n\n"


def test_remove_of_a_middle_paragraph_closes_the_gap_once():
    content = "# T\n\n## Notes\n\nAlpha\n\nremove me\n\nBeta\n"
    report = apply_actions(content, [RemoveFrom(SectionPath("Notes"), "remove me")])
    assert report.content == "# T\n\n## Notes\n\nAlpha\n\nBeta\n"
