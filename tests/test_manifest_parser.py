from __future__ import annotations

from mcp_servers.agentmd.manifest import Contract, ManifestScanner, Param, ScanState, parse_manifest

TODO_MANIFEST = """\
# SimpleTodo
> A minimal todo list that agents can drive directly.

## Auth
- type: session
- note: Uses the browser's existing session cookie

## Actions

### list_todos
- description: Returns all todo items for the current session
- params: none
- returns: { ok, todos: [{ id, title, completed }] }

### add_todo
- description: Creates a new todo item
- params:
  - title (string, required): Text of the todo
  - priority (integer, optional): 1 (high) to 3 (low)
- returns: the created todo
- example: add_todo({ title: "Buy milk" })

### complete_todo
- description: Marks an existing todo item as completed
- params:
  - id (string, required): Id of the todo

## Notes
- description: this section is not about actions
"""


def test_parses_app_identity_and_auth() -> None:
    contract = parse_manifest(TODO_MANIFEST)
    assert contract.app_name == "SimpleTodo"
    assert contract.description == "A minimal todo list that agents can drive directly."
    assert dict(contract.auth) == {"type": "session", "note": "Uses the browser's existing session cookie"}


def test_actions_in_declaration_order() -> None:
    contract = parse_manifest(TODO_MANIFEST)
    assert [a.name for a in contract.actions] == ["list_todos", "add_todo", "complete_todo"]


def test_action_fields_and_params() -> None:
    contract = parse_manifest(TODO_MANIFEST)
    list_todos, add_todo, complete_todo = contract.actions

    assert list_todos.params == ()
    assert list_todos.returns == "{ ok, todos: [{ id, title, completed }] }"

    assert add_todo.description == "Creates a new todo item"
    assert add_todo.example == 'add_todo({ title: "Buy milk" })'
    assert add_todo.params == (
        Param(name="title", type="string", required=True, description="Text of the todo"),
        Param(name="priority", type="integer", required=False, description="1 (high) to 3 (low)"),
    )
    assert complete_todo.params[0].name == "id"


def test_last_action_before_new_section_is_kept() -> None:
    # complete_todo is followed by "## Notes"; the section change must flush it.
    contract = parse_manifest(TODO_MANIFEST)
    assert contract.actions[-1].name == "complete_todo"
    assert contract.actions[-1].description == "Marks an existing todo item as completed"


def test_malformed_param_line_is_dropped_but_siblings_survive() -> None:
    text = """# App
## Actions
### search
- params:
  - query (string, required): What to look for
  - limit [number] optional: broken shape
  - exact (boolean, optional): Match exactly
"""
    skipped: list[tuple[int, str]] = []
    contract = parse_manifest(text, on_skip=lambda lineno, line: skipped.append((lineno, line)))
    (action,) = contract.actions
    assert [p.name for p in action.params] == ["query", "exact"]
    assert skipped == [(6, "- limit [number] optional: broken shape")]


def test_first_heading_and_blockquote_win() -> None:
    text = """# First
> first description
# Second
> second description
"""
    contract = parse_manifest(text)
    assert contract.app_name == "First"
    assert contract.description == "first description"


def test_empty_heading_does_not_claim_app_name() -> None:
    contract = parse_manifest("# \n# Real Name\n")
    assert contract.app_name == "Real Name"


def test_blockquote_after_section_is_not_description() -> None:
    contract = parse_manifest("# App\n## Overview\n> too late\n")
    assert contract.description == ""


def test_repeated_properties_last_one_wins() -> None:
    text = """## Actions
### ping
- description: first
- description: second
- returns: a
- returns: b
"""
    (action,) = parse_manifest(text).actions
    assert action.description == "second"
    assert action.returns == "b"


def test_no_params_marker_clears_params() -> None:
    text = """## Actions
### reset
  - force (boolean, optional): skip confirmation
- params: none
"""
    (action,) = parse_manifest(text).actions
    assert action.params == ()


def test_level3_heading_outside_actions_is_ignored() -> None:
    text = """# App
## Auth
### not_an_action
- type: token
## Actions
### real
"""
    contract = parse_manifest(text)
    assert [a.name for a in contract.actions] == ["real"]
    assert contract.auth["type"] == "token"


def test_unknown_auth_lines_are_ignored() -> None:
    text = "## Auth\n- type: none\n- scope: everything\nfree text\n"
    contract = parse_manifest(text)
    assert dict(contract.auth) == {"type": "none"}


def test_garbage_input_yields_empty_contract() -> None:
    for text in ("", "\x00\x01 not markdown", "#NoSpace\n>nospace\n###orphan", None):
        assert parse_manifest(text) == Contract()  # type: ignore[arg-type]


def test_duplicate_action_names_shadow_last_wins() -> None:
    text = """## Actions
### save
- description: old
### save
- description: new
"""
    contract = parse_manifest(text)
    assert len(contract.actions) == 2
    found = contract.find_action("save")
    assert found is not None and found.description == "new"


def test_crlf_line_endings() -> None:
    text = "# App\r\n## Actions\r\n### go\r\n- description: Go\r\n"
    contract = parse_manifest(text)
    assert contract.app_name == "App"
    assert contract.actions[0].description == "Go"


def test_scanner_states() -> None:
    scanner = ManifestScanner()
    assert scanner.state is ScanState.SEEKING_TITLE
    scanner.feed(["# App", "## Actions", "### a"])
    # feed() flushes the final action and leaves the action state.
    assert scanner.state is ScanState.IN_SECTION
    assert scanner.section == "actions"


def test_contract_to_dict_uses_wire_names() -> None:
    data = parse_manifest(TODO_MANIFEST).to_dict()
    assert data["appName"] == "SimpleTodo"
    assert data["actions"][1]["params"][0] == {
        "name": "title",
        "type": "string",
        "required": True,
        "description": "Text of the todo",
    }
