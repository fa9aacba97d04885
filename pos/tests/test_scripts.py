import importlib.util
import json
import pathlib
import sys

import pytest

from _helpers import add_product

SCRIPTS = pathlib.Path(__file__).resolve().parents[2] / "scripts"


def load(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


backup_verify = load("backup_verify")
integrity_check = load("integrity_check")


@pytest.mark.anyio
async def test_backup_verify_cli(core, capsys) -> None:
    await add_product(core, stock=2)
    meta = await core.backups.create_full_backup()
    await core.backups.create_incremental_backup()
    pattern = str(core.backups.backup_dir / "pos_backup_*")

    assert backup_verify.verify(pattern) is True
    out = capsys.readouterr().out
    assert f"PASS: {meta['filename']}" in out

    (core.backups.backup_dir / meta["filename"]).write_bytes(b"broken")
    assert backup_verify.verify(pattern) is False
    assert "checksum_matches" in capsys.readouterr().out
    assert backup_verify.verify(str(core.backups.backup_dir / "nothing_*")) is False


def test_integrity_check_cli(settings, monkeypatch, capsys) -> None:
    monkeypatch.setattr(
        sys, "argv", ["integrity_check.py", "--database-url", settings.database_url]
    )

    with pytest.raises(SystemExit) as exc:
        integrity_check.main()

    assert exc.value.code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["status"] == "PASS"
