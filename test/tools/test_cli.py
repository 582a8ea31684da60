from pathlib import Path

from pytest import MonkeyPatch, fixture
from typer.testing import CliRunner

from entity_sync.tools.cli._utils import console
from entity_sync.tools.cli.main import app

SCENARIO = """\
root: Order
types:
  Order:
    properties:
      id: number
      title: string
      items: "[Item]"
  Item:
    properties:
      id: number
      qty: number
original:
  - id: 1
    title: First order
    items:
      - {id: 100, qty: 1}
edits:
  - location: id#1.title
    value: Renamed
  - location: id#1.items.id#100.qty
    value: 2
"""

runner = CliRunner()


@fixture(autouse=True)
def workdir(tmp_path: Path, monkeypatch: MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ENTITY_SYNC_SCENARIO", raising=False)
    monkeypatch.delenv("ENTITY_SYNC_LOG_LEVEL", raising=False)

    # avoid wrapping of log messages
    monkeypatch.setattr(console, "width", 200)

    (tmp_path / "scenario.yaml").write_text(SCENARIO)
    return tmp_path


def test_check():
    result = runner.invoke(app, ["check", "scenario.yaml"])

    assert result.exit_code == 0, result.output
    assert (
        "Scenario 'scenario.yaml' is valid: 2 type(s), 1 original entities, 2 edit(s)"
        in result.output
    )


def test_default_scenario(workdir: Path):
    (workdir / "scenario.yaml").rename(workdir / "entity-sync.yaml")

    result = runner.invoke(app, ["check"])
    assert result.exit_code == 0, result.output


def test_diff():
    result = runner.invoke(app, ["diff", "scenario.yaml"])

    assert result.exit_code == 0, result.output
    assert '"title": "Renamed"' in result.output
    assert "id#1.title" in result.output
    assert "id#1.items.id#100.qty" in result.output


def test_diff_no_changes(workdir: Path):
    (workdir / "scenario.yaml").write_text(SCENARIO.split("edits:")[0])

    result = runner.invoke(app, ["diff", "scenario.yaml"])

    assert result.exit_code == 0, result.output
    assert "No changes" in result.output


def test_plan():
    result = runner.invoke(app, ["plan", "scenario.yaml"])

    assert result.exit_code == 0, result.output
    assert "<Order> 'id#1'" in result.output
    assert "1 sync action(s) using FULL_TREE" in result.output

    result = runner.invoke(
        app, ["plan", "scenario.yaml", "--strategy", "split-tree"]
    )

    assert result.exit_code == 0, result.output
    assert "<Item> 'id#1.items.id#100'" in result.output
    assert "2 sync action(s) using SPLIT_TREE" in result.output

    result = runner.invoke(
        app, ["plan", "scenario.yaml", "--location", "id#1.title"]
    )
    assert result.exit_code == 1
    assert "Failed to plan sync at 'id#1.title'" in result.output


def test_bad_scenario(workdir: Path):
    result = runner.invoke(app, ["check", "missing.yaml"])
    assert result.exit_code == 2

    (workdir / "scenario.yaml").write_text(SCENARIO.replace("root: Order", "root: X"))
    result = runner.invoke(app, ["check", "scenario.yaml"])
    assert result.exit_code == 2


def test_replay_error(workdir: Path):
    (workdir / "scenario.yaml").write_text(
        SCENARIO.replace("id#1.title", "id#1.subtitle")
    )

    result = runner.invoke(app, ["check", "scenario.yaml"])

    assert result.exit_code == 1
    assert "Failed to replay scenario 'scenario.yaml'" in result.output


def test_log_level():
    result = runner.invoke(app, ["--log-level", "debug", "check", "scenario.yaml"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(app, ["--log-level", "verbose", "check", "scenario.yaml"])
    assert result.exit_code == 2

    # restore default
    runner.invoke(app, ["--log-level", "info", "check", "scenario.yaml"])
