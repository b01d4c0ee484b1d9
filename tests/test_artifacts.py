import json
from dataclasses import replace

import pytest

from dagci.artifacts import ArtifactStore, DirectorySink
from dagci.errors import ArtifactNotFound


def test_same_name_is_versioned_not_overwritten():
    store = ArtifactStore("run-1")
    first = store.put("zap-report", b"first", "dast")
    second = store.put("zap-report", b"second", "dast")

    assert (first.version, second.version) == (1, 2)
    assert store.get(first) == b"first"
    assert store.get(second) == b"second"
    assert store.latest("zap-report") == second
    assert store.versions("zap-report") == [first, second]
    assert len(store) == 2


def test_ref_metadata():
    store = ArtifactStore("run-1", retention_days=5)
    ref = store.put("sbom", "text payload", "sca")

    assert ref.size == len(b"text payload")
    assert ref.job == "sca"
    assert ref.run_id == "run-1"
    assert ref.retention_days == 5
    assert len(ref.sha256) == 64
    assert str(ref) == "sbom@v1"


def test_unknown_artifacts_raise():
    store = ArtifactStore("run-1")
    ref = store.put("a", b"x", "job")

    with pytest.raises(ArtifactNotFound):
        store.latest("missing")
    with pytest.raises(ArtifactNotFound):
        store.get(replace(ref, version=7))
    with pytest.raises(ArtifactNotFound):
        ArtifactStore("run-2").get(ref)


def test_empty_name_is_rejected():
    with pytest.raises(ValueError):
        ArtifactStore().put("", b"x", "job")


def test_directory_sink_exports_every_version(tmp_path):
    store = ArtifactStore("run-1")
    store.put("zap-report", b"<html>1</html>", "dast")
    store.put("zap-report", b"<html>2</html>", "dast")
    store.put("trivy", b"{}", "trivy")

    manifest_path = DirectorySink(tmp_path / "out").collect(store)

    assert (tmp_path / "out" / "zap-report" / "v1").read_bytes() == b"<html>1</html>"
    assert (tmp_path / "out" / "zap-report" / "v2").read_bytes() == b"<html>2</html>"
    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    assert manifest["run_id"] == "run-1"
    assert [(a["name"], a["version"]) for a in manifest["artifacts"]] == [
        ("zap-report", 1),
        ("zap-report", 2),
        ("trivy", 1),
    ]


@pytest.mark.parametrize("name", ["../escaped", "nested/report", "/abs", "..", "manifest.json", "a\\b"])
def test_names_that_are_not_plain_file_names_are_rejected(name):
    with pytest.raises(ValueError, match="Invalid artifact name"):
        ArtifactStore().put(name, b"x", "job")


def test_directory_sink_stays_under_its_root(tmp_path):
    store = ArtifactStore("run-1")
    store.put("zap-report", b"<html/>", "dast")
    with pytest.raises(ValueError):
        store.put("../escaped", b"x", "dast")

    DirectorySink(tmp_path / "out").collect(store)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["out"]
