import pytest
import yaml
from pydantic import ValidationError

from src.runbooks.manifests import load_manifests, parse_manifests

MIXED = """\
apiVersion: runbook.runbook.io/v1alpha1
kind: Runbook
metadata:
  name: disk-full
  namespace: storage
spec:
  alertName: DiskFull
  severity: warning
---
kind: RunbookTemplate
metadata:
  name: terse
spec:
  description: Title only
  template: "# {{ alert_name }}"
---
kind: ConfigMap
metadata:
  name: unrelated
---
"""


def test_parse_splits_runbooks_and_templates():
    found = parse_manifests(MIXED)

    assert [r.identity.name for r in found.runbooks] == ["disk-full"]
    assert [t.name for t in found.templates] == ["terse"]
    assert found.templates[0].description == "Title only"


def test_template_name_in_spec_wins_over_metadata():
    found = parse_manifests("kind: RunbookTemplate\nmetadata:\n  name: meta\nspec:\n  name: declared\n  template: x\n")

    assert found.templates[0].name == "declared"


def test_load_reads_files_in_order(tmp_path):
    first = tmp_path / "a.yaml"
    second = tmp_path / "b.yaml"
    first.write_text(MIXED)
    second.write_text(MIXED.replace("disk-full", "disk-slow"))

    found = load_manifests([first, second])

    assert [r.identity.name for r in found.runbooks] == ["disk-full", "disk-slow"]
    assert len(found.templates) == 2


def test_invalid_runbook_document_raises():
    with pytest.raises(ValidationError):
        parse_manifests("kind: Runbook\nspec:\n  alertName: NoMetadata\n")


def test_malformed_yaml_raises():
    with pytest.raises(yaml.YAMLError):
        parse_manifests("kind: Runbook\n  metadata: [\n")
