"""Tests for the form report batch command."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from formtrack.auth import InMemoryFormDirectory
from formtrack.config import Settings
from formtrack.db.memory import InMemoryEventStore, InMemorySessionStore
from formtrack.lifespan import build_resources


@pytest.fixture
def seeded_resources():
    resources = build_resources(
        Settings(),
        event_store=InMemoryEventStore(),
        session_store=InMemorySessionStore(),
        forms=InMemoryFormDirectory(),
    )
    return resources


def test_single_form_prints_report(seeded_resources, capsys):
    from formtrack.batch import form_report

    with patch.object(form_report, "setup_resources", AsyncMock(return_value=seeded_resources)), patch.object(
        form_report, "cleanup_resources", AsyncMock()
    ) as cleanup:
        assert form_report.main(["--form-id", "form-1", "--range", "30d"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["formId"] == "form-1"
    assert payload["range"] == "30d"
    assert payload["analytics"]["overview"]["totalViews"] == 0
    cleanup.assert_awaited_once_with(seeded_resources)


def test_several_forms_print_a_list(seeded_resources, capsys):
    from formtrack.batch import form_report

    with patch.object(form_report, "setup_resources", AsyncMock(return_value=seeded_resources)), patch.object(
        form_report, "cleanup_resources", AsyncMock()
    ):
        form_report.main(["--form-id", "a", "--form-id", "b", "--pretty"])

    payload = json.loads(capsys.readouterr().out)
    assert [r["formId"] for r in payload] == ["a", "b"]
    assert all(r["range"] == "7d" for r in payload)


def test_form_id_required():
    from formtrack.batch import form_report

    with pytest.raises(SystemExit):
        form_report.main([])
