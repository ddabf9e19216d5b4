import base64
import gzip
import io
import json
import os
import tarfile

import pytest

from rukpak.unpack import build_bundle_archive, main


@pytest.fixture
def bundle(tmp_path):
    manifests = tmp_path / "manifests"
    manifests.mkdir()
    (manifests / "a.yaml").write_text("kind: ConfigMap\n")
    (manifests / "b.yaml").write_text("kind: Secret\n")
    (tmp_path / "README").write_text("hello")
    return tmp_path


def _members(content: bytes) -> dict:
    with tarfile.open(fileobj=io.BytesIO(content), mode="r:gz") as tar:
        result = {}
        for member in tar.getmembers():
            data = tar.extractfile(member).read() if member.isreg() else None
            result[member.name] = (member, data)
        return result


def test_archive_holds_every_entry(bundle):
    members = _members(build_bundle_archive(str(bundle)))
    assert sorted(members) == sorted([".", "README", "manifests", "manifests/a.yaml", "manifests/b.yaml"])


def test_archive_file_contents_round_trip(bundle):
    members = _members(build_bundle_archive(str(bundle)))
    assert members["manifests/a.yaml"][1] == b"kind: ConfigMap\n"
    assert members["README"][1] == b"hello"
    assert members["manifests"][0].isdir()


def test_archive_clears_ownership(bundle):
    members = _members(build_bundle_archive(str(bundle)))
    for member, _ in members.values():
        assert member.uid == 0
        assert member.gid == 0
        assert member.uname == ""
        assert member.gname == ""


def test_archive_is_gzip(bundle):
    content = build_bundle_archive(str(bundle))
    assert content[:2] == b"\x1f\x8b"
    assert len(gzip.decompress(content)) % 512 == 0


def test_archive_is_deterministic(bundle):
    first = build_bundle_archive(str(bundle))
    second = build_bundle_archive(str(bundle))
    assert gzip.decompress(first) == gzip.decompress(second)
    first_members = _members(first)
    second_members = _members(second)
    assert {name: data for name, (_, data) in first_members.items()} == {
        name: data for name, (_, data) in second_members.items()
    }
    assert first_members["README"][1] == b"hello"


def test_symlinks_are_skipped(bundle):
    os.symlink(bundle / "README", bundle / "link")
    members = _members(build_bundle_archive(str(bundle)))
    assert "link" not in members
    assert "README" in members


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_bundle_archive(str(tmp_path / "missing"))


def test_main_prints_base64_json(bundle, capsys):
    assert main(["--bundle-dir", str(bundle)]) == 0
    out = capsys.readouterr().out
    assert out.endswith("\n")
    document = json.loads(out)
    assert list(document) == ["content"]
    members = _members(base64.b64decode(document["content"]))
    assert members["manifests/b.yaml"][1] == b"kind: Secret\n"


def test_main_missing_directory_fails(tmp_path, capsys):
    assert main(["--bundle-dir", str(tmp_path / "missing")]) == 1
    assert "generate tar.gz for bundle dir" in capsys.readouterr().err


def test_main_version(capsys):
    assert main(["--version"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 1
    assert lines[0].strip() == lines[0]
    assert len(lines[0]) > 0


def test_main_rejects_positional_arguments():
    with pytest.raises(SystemExit) as excinfo:
        main(["extra"])
    assert excinfo.value.code == 2