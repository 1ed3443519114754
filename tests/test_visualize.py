import json

import pytest

from sample_convos import make_convo, simple_tree, with_loop

from convoflow import DotRenderError, FlowForest, FlowNode, build_flow_view, forest_to_dot, render_flow_dot
from convoflow.visualize import (
    collect_coverage,
    export_coverage_report,
    export_forest_statistics,
    export_forest_to_dot,
    main,
    visualize_forest_ascii,
)


def write_convos(path, convos):
    path.write_text(json.dumps([convo.to_dict() for convo in convos]), encoding="utf-8")
    return str(path)


def test_dot_labels_for_prompt_and_branches():
    dot = render_flow_dot(with_loop(), {"detectLoops": True, "summarizeMultiSteps": False})
    assert '[label="#bot - Welcome BUTTONS(path1,path2)"]' in dot
    assert '[label="#bot - This is path 2"]' in dot
    assert dot.startswith('digraph "convoflow" {')
    assert dot.rstrip().endswith("}")


def test_dot_edges_and_loop_back_edge():
    dot = render_flow_dot(with_loop(), detect_loops=True, summarize_multi_steps=False)
    lines = [line.strip() for line in dot.splitlines()]
    assert "n0 -> n1;" in lines
    assert "n1 -> n2;" in lines
    assert "n2 -> n3;" in lines
    assert 'n3 -> n0 [style=dashed, constraint=false, label="loop"];' in lines
    assert 'n6 -> n0 [style=dashed, constraint=false, label="loop"];' in lines


def test_dot_for_simple_tree():
    dot = render_flow_dot(simple_tree(), summarize_multi_steps=False)
    assert '[label="#bot - Welcome BUTTONS(path1,path2)"]' in dot
    assert '[label="#bot - This is path 2"]' in dot
    assert "style=dashed" not in dot


def test_summarized_node_joins_labels():
    dot = render_flow_dot(simple_tree())
    assert '[label="#me - hello\\n#bot - Welcome BUTTONS(path1,path2)"]' in dot


def test_dot_escapes_special_characters():
    convo = make_convo("quotes", ("bot", 'Say "hi" \\ now\nthen go'))
    dot = render_flow_dot([convo])
    assert '[label="#bot - Say \\"hi\\" \\\\ now\\nthen go"]' in dot


def test_unsupported_character_reports_node():
    convo = make_convo("bell", ("me", "hello"), ("bot", "ding\x07"))
    forest = build_flow_view([convo], summarize_multi_steps=False)
    with pytest.raises(DotRenderError) as excinfo:
        forest_to_dot(forest)
    assert excinfo.value.node_id == "n1"
    assert excinfo.value.char == "\x07"
    assert isinstance(excinfo.value, ValueError)


def test_unresolved_loop_reference_reports_node():
    stray = FlowNode("#bot - b", "h2", loop_ref="deadbeef", depth=1)
    forest = FlowForest(roots=(FlowNode("#bot - a", "h1", children=(stray,)),))
    with pytest.raises(DotRenderError) as excinfo:
        forest_to_dot(forest)
    assert excinfo.value.node_id == "n1"
    assert excinfo.value.signature == "#bot - b"
    assert "deadbeef" in str(excinfo.value)


def test_long_conversation_renders():
    steps = [("me", f"q{i}") if i % 2 == 0 else ("bot", f"a{i}") for i in range(2000)]
    convo = make_convo("marathon", *steps)

    dot = render_flow_dot([convo], summarize_multi_steps=False)
    assert "  n1998 -> n1999;" in dot
    assert '  n1999 [label="#bot - a1999"];' in dot

    forest = build_flow_view([convo], summarize_multi_steps=False)
    assert export_forest_statistics(forest)["max_depth"] == 1999
    assert len(visualize_forest_ascii(forest).splitlines()) == 2000

    summarized = render_flow_dot([convo])
    assert summarized.count("[label=") == 1


def test_rendering_does_not_modify_forest():
    forest = build_flow_view(with_loop(), detect_loops=True)
    before = forest.to_dict()
    assert forest_to_dot(forest) == forest_to_dot(forest)
    assert forest.to_dict() == before


def test_ascii_view_shows_memberships_and_loops():
    forest = build_flow_view(with_loop(), detect_loops=True, summarize_multi_steps=False)
    text = visualize_forest_ascii(forest)
    lines = text.splitlines()
    assert lines[0] == "└─ #bot - Welcome BUTTONS(path1,path2) [convo1:0,3; convo2:0,3]"
    assert sum(1 for line in lines if "↺" in line) == 2


def test_statistics():
    forest = build_flow_view(with_loop(), detect_loops=True, summarize_multi_steps=False)
    stats = export_forest_statistics(forest)
    assert stats == {
        "roots": 1,
        "total_nodes": 7,
        "leaf_nodes": 0,
        "loop_nodes": 2,
        "branch_nodes": 1,
        "max_depth": 3,
        "conversations": 2,
    }


def test_coverage_lists_every_step():
    forest = build_flow_view(with_loop(), detect_loops=True, summarize_multi_steps=False)
    coverage = [entry for entry in collect_coverage(forest) if entry["convo"] == "convo1"]
    assert [entry["step_index"] for entry in coverage] == [0, 1, 2, 3, 3]
    assert [entry["loop"] for entry in coverage] == [False, False, False, False, True]


def test_exports_write_files(tmp_path):
    forest = build_flow_view(with_loop(), detect_loops=True)
    dot_file = tmp_path / "flow.dot"
    export_forest_to_dot(forest, str(dot_file))
    assert dot_file.read_text(encoding="utf-8") == forest_to_dot(forest)

    report_file = tmp_path / "coverage.json"
    export_coverage_report(forest, str(report_file))
    assert json.loads(report_file.read_text(encoding="utf-8")) == collect_coverage(forest)

    forest_file = tmp_path / "forest.json"
    forest.save(str(forest_file))
    assert json.loads(forest_file.read_text(encoding="utf-8"))["roots"][0]["hash"] == forest[0].hash


def test_cli_renders_with_env_options(tmp_path, monkeypatch, capsys):
    convo_file = write_convos(tmp_path / "convos.json", with_loop())
    monkeypatch.setenv("CONVOFLOW_DETECT_LOOPS", "true")
    monkeypatch.setenv("CONVOFLOW_SUMMARIZE_MULTI_STEPS", "false")
    monkeypatch.delenv("CONVOFLOW_MAX_DEPTH", raising=False)

    assert main([convo_file, "dot"]) == 0
    out = capsys.readouterr().out
    assert '[label="#bot - This is path 1"]' in out
    assert "style=dashed" in out

    assert main([convo_file, "stats"]) == 0
    assert "FLOW STATISTICS" in capsys.readouterr().out


def test_cli_usage_and_unknown_command(tmp_path, capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().out
    convo_file = write_convos(tmp_path / "convos.json", simple_tree())
    assert main([convo_file, "pdf"]) == 1
